"""Pytest configuration and fixtures for rest-proxy tests.

This file provides:
- make_proxy: RestProxy wired to an httpx.MockTransport instead of the network
- RecordingHandler: MockTransport handler that records requests and replies
  with a canned response
- RedirectingHandler: answers /old with a redirect to /new
- GatedHandler: async handler that holds requests until released, for
  observing calls while they are in flight
- CallbackRecorder: collects call_async() callback invocations
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generator

import httpx
import pytest

from rest_proxy.errors import CallError
from rest_proxy.proxy import RestProxy

BASE_URL = "http://x.com"


def make_proxy(
    handler: Callable[[httpx.Request], Any],
    url: str = BASE_URL,
    **kwargs: Any,
) -> RestProxy:
    """Create a proxy whose executor talks to handler instead of the network."""
    return RestProxy(url, transport=httpx.MockTransport(handler), **kwargs)


class RecordingHandler:
    """Replies with a fixed response and remembers every request."""

    def __init__(
        self,
        status_code: int = 200,
        content: bytes = b"ok",
        headers: dict[str, str] | None = None,
        reason_phrase: bytes | None = None,
    ) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.reason_phrase = reason_phrase
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        extensions = {"reason_phrase": self.reason_phrase} if self.reason_phrase else {}
        return httpx.Response(
            self.status_code,
            content=self.content,
            headers=self.headers,
            extensions=extensions,
        )

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


class RedirectingHandler:
    """Answers /old with a 301 to /new, and /new with 200."""

    def __init__(self, status_code: int = 301) -> None:
        self.status_code = status_code
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append(request.url.path)
        if request.url.path == "/old":
            return httpx.Response(self.status_code, headers={"Location": "/new"})
        return httpx.Response(200, content=b"moved here")


class GatedHandler:
    """Async handler that waits for release() before answering.

    The gate is created lazily so it belongs to the loop that first uses it.
    """

    def __init__(self, status_code: int = 200, content: bytes = b"released") -> None:
        self.status_code = status_code
        self.content = content
        self.arrived = 0
        self._gate: asyncio.Event | None = None

    @property
    def gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    def release(self) -> None:
        self.gate.set()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.arrived += 1
        await self.gate.wait()
        return httpx.Response(self.status_code, content=self.content)


class CallbackRecorder:
    """Collects (call, error, observer, user_data) tuples from call_async()."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, CallError | None, Any, Any]] = []
        self._event: asyncio.Event | None = None

    @property
    def event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
        return self._event

    def __call__(self, call: Any, error: CallError | None, observer: Any, user_data: Any) -> None:
        self.calls.append((call, error, observer, user_data))
        self.event.set()

    async def wait(self, timeout: float = 5.0) -> None:
        await asyncio.wait_for(self.event.wait(), timeout)

    @property
    def error(self) -> CallError | None:
        assert len(self.calls) == 1, f"expected one callback, got {len(self.calls)}"
        return self.calls[0][1]


async def settle(rounds: int = 5) -> None:
    """Let the loop run a few iterations so submitted tasks make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def proxy(recording_handler: RecordingHandler) -> Generator[RestProxy, None, None]:
    proxy = make_proxy(recording_handler)
    yield proxy
    proxy.close()
