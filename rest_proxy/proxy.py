"""RestProxy - Shared service configuration and call factory.

A proxy holds what every call to one service has in common: the base URL
(possibly a format string that must be bound first), the default User-Agent
and the executor that performs the I/O. Calls read the proxy; they never
modify it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from rest_proxy.executor import HttpExecutor
from rest_proxy.models import ProxyConfig

if TYPE_CHECKING:
    from rest_proxy.call import PrepareHook, RestProxyCall

logger = logging.getLogger(__name__)


class RestProxy:
    """Entry point for talking to one REST service.

    Usage:
        with RestProxy("https://api.example.com/v1/") as proxy:
            call = proxy.new_call()
            call.set_function("items")
            call.sync()

    When the URL contains placeholders, construct with binding_required=True
    and call bind() before creating calls:

        proxy = RestProxy("https://{}.example.com/", binding_required=True)
        proxy.bind("eu")
    """

    def __init__(
        self,
        config: ProxyConfig | str,
        *,
        binding_required: bool = False,
        user_agent: str | None = None,
        executor: HttpExecutor | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the proxy.

        Args:
            config: A ProxyConfig, or the URL (format) as a plain string.
            binding_required: Only used when config is a string.
            user_agent: Only used when config is a string.
            executor: Executor to share with other proxies. When omitted, the
                proxy creates and owns one.
            transport: Passed to the executor the proxy creates.
        """
        if isinstance(config, str):
            config = ProxyConfig(
                url_format=config,
                binding_required=binding_required,
                user_agent=user_agent,
            )
        self._config = config
        self._user_agent = config.user_agent
        self._bound_url: str | None = None if config.binding_required else config.url_format

        self._owns_executor = executor is None
        self.executor = executor or HttpExecutor.from_config(config, transport=transport)

    def __enter__(self) -> RestProxy:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the executor if this proxy created it."""
        if self._owns_executor:
            self.executor.close()

    @property
    def config(self) -> ProxyConfig:
        return self._config

    @property
    def url_format(self) -> str:
        return self._config.url_format

    @property
    def binding_required(self) -> bool:
        return self._config.binding_required

    @property
    def bound_url(self) -> str | None:
        """URL calls are sent to, or None while a required binding is missing."""
        return self._bound_url

    @property
    def user_agent(self) -> str | None:
        return self._user_agent

    def set_user_agent(self, user_agent: str | None) -> None:
        self._user_agent = user_agent

    def bind(self, *args: Any, **kwargs: Any) -> str:
        """Fill the URL format's placeholders and remember the result.

        Returns:
            The bound URL.

        Raises:
            ValueError: The arguments do not match the placeholders.
        """
        try:
            bound = self._config.url_format.format(*args, **kwargs)
        except (IndexError, KeyError) as e:
            raise ValueError(f"Cannot bind URL format '{self._config.url_format}': {e!r}") from e
        self._bound_url = bound
        logger.debug("Bound URL %s", bound)
        return bound

    def new_call(self, prepare: PrepareHook | None = None) -> RestProxyCall:
        """Create a call against this proxy.

        Args:
            prepare: Optional hook run just before each request is encoded.
        """
        from rest_proxy.call import RestProxyCall

        return RestProxyCall(self, prepare=prepare)
