"""Config Loader - Loads proxy configuration from YAML.

String values may reference environment variables as ${ENV_VAR}, or
${ENV_VAR:-default} to fall back when the variable is unset.

Example file:

    url_format: "https://{region}.api.example.com/v2/"
    binding_required: true
    user_agent: "example-client/1.0"
    timeout: 10
    ca_bundle: "${EXAMPLE_CA_BUNDLE}"
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import httpx
import yaml

from rest_proxy.errors import ConfigError
from rest_proxy.models import ProxyConfig
from rest_proxy.proxy import RestProxy

_ENV_VAR_PATTERN = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


def load_proxy_config(config_path: Path) -> ProxyConfig:
    """Load proxy configuration from YAML with ${ENV_VAR} substitution.

    Raises:
        ConfigError: Missing file, invalid YAML, unset variables, or values
            that do not validate.
    """
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    missing: list[str] = []
    raw_config = _expand_env(raw_config, missing)
    if missing:
        names = ", ".join(sorted(set(missing)))
        raise ConfigError(f"Environment variables not set: {names}")

    try:
        return ProxyConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def proxy_from_config_file(
    config_path: Path,
    transport: httpx.BaseTransport | None = None,
) -> RestProxy:
    """Load a config file and build a proxy that owns its executor."""
    return RestProxy(load_proxy_config(config_path), transport=transport)


def _expand_env(data: Any, missing: list[str]) -> Any:
    """Expand ${VAR} and ${VAR:-default} in every string value of data.

    Keys are left alone. Names of unset variables without a default are
    appended to missing instead of raising, so one error can list them all.
    """
    if isinstance(data, str):

        def lookup(match: re.Match) -> str:
            name, default = match.group("name"), match.group("default")
            value = os.environ.get(name, default)
            if value is None:
                missing.append(name)
                return match.group(0)
            return value

        return _ENV_VAR_PATTERN.sub(lookup, data)
    if isinstance(data, dict):
        return {key: _expand_env(value, missing) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env(item, missing) for item in data]
    return data
