"""Tests for proxy configuration loading and the RestProxy object.

Tests cover:
- YAML loading with ${ENV_VAR} substitution
- Validation failures wrapped in ConfigError
- RestProxy construction from config, binding, user agent, executor ownership
"""

from pathlib import Path

import httpx
import pytest

from rest_proxy.config_loader import load_proxy_config, proxy_from_config_file
from rest_proxy.errors import ConfigError
from rest_proxy.executor import HttpExecutor
from rest_proxy.models import ProxyConfig
from rest_proxy.proxy import RestProxy
from tests.conftest import RecordingHandler


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "proxy.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadProxyConfig:
    """load_proxy_config() parsing and validation."""

    def test_minimal(self, tmp_path: Path) -> None:
        config = load_proxy_config(_write(tmp_path, 'url_format: "http://x.com/"\n'))
        assert config.url_format == "http://x.com/"
        assert config.binding_required is False
        assert config.user_agent is None
        assert config.timeout == 30.0

    def test_full(self, tmp_path: Path) -> None:
        config = load_proxy_config(_write(tmp_path, (
            'url_format: "https://{region}.api.example.com/"\n'
            "binding_required: true\n"
            'user_agent: "example/1.0"\n'
            "timeout: 5\n"
            "verify_ssl: false\n"
        )))
        assert config.binding_required is True
        assert config.user_agent == "example/1.0"
        assert config.timeout == 5.0
        assert config.verify_ssl is False

    def test_env_substitution(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REST_PROXY_HOST", "staging.example.com")
        config = load_proxy_config(_write(tmp_path, 'url_format: "https://${REST_PROXY_HOST}/v1"\n'))
        assert config.url_format == "https://staging.example.com/v1"

    def test_missing_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REST_PROXY_UNSET", raising=False)
        path = _write(tmp_path, 'url_format: "https://${REST_PROXY_UNSET}/"\n')
        with pytest.raises(ConfigError, match="REST_PROXY_UNSET"):
            load_proxy_config(path)

    def test_env_default_used_when_unset(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REST_PROXY_HOST", raising=False)
        monkeypatch.setenv("REST_PROXY_AGENT", "from-env/1")
        config = load_proxy_config(_write(tmp_path, (
            'url_format: "https://${REST_PROXY_HOST:-api.example.com}/"\n'
            'user_agent: "${REST_PROXY_AGENT:-fallback/0}"\n'
        )))
        assert config.url_format == "https://api.example.com/"
        assert config.user_agent == "from-env/1"

    def test_all_missing_env_vars_reported(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REST_PROXY_A", raising=False)
        monkeypatch.delenv("REST_PROXY_B", raising=False)
        path = _write(tmp_path, (
            'url_format: "https://${REST_PROXY_B}/"\n'
            'user_agent: "${REST_PROXY_A}"\n'
        ))
        with pytest.raises(ConfigError, match="REST_PROXY_A, REST_PROXY_B"):
            load_proxy_config(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_proxy_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_proxy_config(_write(tmp_path, "url_format: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            load_proxy_config(_write(tmp_path, "- a\n- b\n"))

    def test_unknown_key(self, tmp_path: Path) -> None:
        path = _write(tmp_path, 'url_format: "http://x.com/"\nretries: 3\n')
        with pytest.raises(ConfigError, match="Invalid config structure"):
            load_proxy_config(path)

    def test_non_positive_timeout(self, tmp_path: Path) -> None:
        path = _write(tmp_path, 'url_format: "http://x.com/"\ntimeout: 0\n')
        with pytest.raises(ConfigError):
            load_proxy_config(path)

    def test_proxy_from_config_file(self, tmp_path: Path) -> None:
        handler = RecordingHandler()
        path = _write(tmp_path, 'url_format: "http://x.com/api/"\nuser_agent: "cfg/1"\n')
        with proxy_from_config_file(path, transport=httpx.MockTransport(handler)) as proxy:
            call = proxy.new_call()
            call.set_function("ping")
            call.sync()
        assert str(handler.last.url) == "http://x.com/api/ping"
        assert handler.last.headers["User-Agent"] == "cfg/1"


class TestRestProxy:
    """RestProxy configuration accessors."""

    def test_from_string(self) -> None:
        proxy = RestProxy("http://x.com/", user_agent="ua/1")
        assert proxy.url_format == "http://x.com/"
        assert proxy.bound_url == "http://x.com/"
        assert proxy.user_agent == "ua/1"
        assert not proxy.binding_required

    def test_from_config(self) -> None:
        proxy = RestProxy(ProxyConfig(url_format="http://{}/", binding_required=True))
        assert proxy.bound_url is None
        proxy.bind("x.com")
        assert proxy.bound_url == "http://x.com/"

    def test_set_user_agent(self) -> None:
        proxy = RestProxy("http://x.com/")
        proxy.set_user_agent("later/2")
        assert proxy.user_agent == "later/2"
        assert proxy.config.user_agent is None

    def test_shared_executor_not_closed(self) -> None:
        executor = HttpExecutor(transport=httpx.MockTransport(RecordingHandler()))
        with RestProxy("http://x.com/", executor=executor) as proxy:
            proxy.new_call().sync()
        assert executor._client is not None
        executor.close()
        assert executor._client is None

    def test_owned_executor_closed(self) -> None:
        proxy = RestProxy("http://x.com/", transport=httpx.MockTransport(RecordingHandler()))
        proxy.new_call().sync()
        proxy.close()
        assert proxy.executor._client is None
