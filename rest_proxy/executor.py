"""Executor - Sends built requests over httpx and captures raw responses.

The executor is the only component that performs I/O. It offers three
operations:

- send_blocking(): send on the calling thread with a shared httpx.Client.
- submit(): schedule the send as a task on the running asyncio loop and
  report the outcome to a completion handler exactly once.
- cancel(): ask a submitted task to stop. The completion handler still runs,
  with a CANCELLED transport status.

Transport failures never escape as exceptions; they are recorded as
RawResponse objects carrying a TransportStatus sentinel.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Callable

import httpx

from rest_proxy.error_mapper import response_from_exception
from rest_proxy.errors import ConfigError
from rest_proxy.models import ProxyConfig, RawResponse, TransportStatus

logger = logging.getLogger(__name__)

CompletionHandler = Callable[[RawResponse, Any], None]


class Invocation:
    """Handle for one submitted request."""

    def __init__(self, task: asyncio.Task[RawResponse], loop: asyncio.AbstractEventLoop) -> None:
        self.task = task
        self.loop = loop

    def done(self) -> bool:
        return self.task.done()


class HttpExecutor:
    """Sends requests for every call created from one proxy.

    Usage:
        executor = HttpExecutor(timeout=10.0)
        try:
            raw = executor.send_blocking(request)
        finally:
            executor.close()

    Or with context manager:
        with HttpExecutor() as executor:
            raw = executor.send_blocking(request)

    Asynchronous sends open a short-lived httpx.AsyncClient per request, so
    the executor can be used from any number of event loops (the blocking
    run() wrapper creates a fresh loop for every call).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        ca_bundle: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            timeout: Timeout in seconds applied to every request.
            verify_ssl: Verify server certificates.
            ca_bundle: Path to a CA bundle used for verification.
            transport: Transport to use instead of the network. Must implement
                both the sync and async transport interfaces (as
                httpx.MockTransport does). Only close() closes it.
        """
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._ca_bundle = ca_bundle
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_config(
        cls,
        config: ProxyConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> HttpExecutor:
        return cls(
            timeout=config.timeout,
            verify_ssl=config.verify_ssl,
            ca_bundle=config.ca_bundle,
            transport=transport,
        )

    def __enter__(self) -> HttpExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Close the blocking client, if one was opened."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _build_client_kwargs(self) -> dict[str, Any]:
        """Build kwargs shared by httpx.Client and httpx.AsyncClient.

        Returns:
            Dictionary of kwargs for the client constructor.
        """
        # Redirects are followed so callers only ever see the final response
        kwargs: dict[str, Any] = {"timeout": self._timeout, "follow_redirects": True}

        if self._transport is not None:
            kwargs["transport"] = self._transport
            return kwargs

        if self._ca_bundle:
            try:
                kwargs["verify"] = ssl.create_default_context(cafile=self._ca_bundle)
            except (OSError, ssl.SSLError) as e:
                raise ConfigError(f"Cannot load CA bundle '{self._ca_bundle}': {e}") from e
        elif not self._verify_ssl:
            kwargs["verify"] = False
        # else: use httpx default (True)

        return kwargs

    def _with_timeout(self, request: httpx.Request) -> httpx.Request:
        # Requests built outside a client carry no timeout extension
        request.extensions.setdefault("timeout", httpx.Timeout(self._timeout).as_dict())
        return request

    # -------------------------------------------------------------------------
    # Blocking
    # -------------------------------------------------------------------------

    def send_blocking(self, request: httpx.Request) -> RawResponse:
        """Send a request and wait for the full response.

        Args:
            request: A request whose body has already been read.

        Returns:
            RawResponse with the HTTP status, or a TransportStatus sentinel.
        """
        if self._client is None:
            self._client = httpx.Client(**self._build_client_kwargs())

        logger.debug("Sending %s %s (blocking)", request.method, request.url)
        try:
            response = self._client.send(self._with_timeout(request))
        except httpx.HTTPError as e:
            logger.debug("Transport failure for %s: %s", request.url, e)
            return response_from_exception(e)
        except Exception as e:
            return _unexpected_failure(e)

        return _convert_response(response)

    # -------------------------------------------------------------------------
    # Asynchronous
    # -------------------------------------------------------------------------

    def submit(
        self,
        request: httpx.Request,
        handler: CompletionHandler,
        context: Any = None,
    ) -> Invocation:
        """Schedule a request on the running event loop.

        Args:
            request: A request whose body has already been read.
            handler: Called as ``handler(raw_response, context)`` exactly
                once, on the loop thread, when the send finishes, fails or is
                cancelled.
            context: Passed through to the handler.

        Returns:
            Invocation handle usable with cancel().

        Raises:
            RuntimeError: No event loop is running in this thread.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._send_async(request))

        def _deliver(finished: asyncio.Task[RawResponse]) -> None:
            handler(_task_outcome(finished), context)

        task.add_done_callback(_deliver)
        logger.debug("Submitted %s %s", request.method, request.url)
        return Invocation(task, loop)

    def cancel(self, invocation: Invocation) -> None:
        """Request abort of a submitted send.

        Safe to call from any thread. When called off the loop thread the
        cancellation is handed to the loop with call_soon_threadsafe.
        """
        if invocation.done():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is invocation.loop:
            invocation.task.cancel()
        elif not invocation.loop.is_closed():
            invocation.loop.call_soon_threadsafe(invocation.task.cancel)

    async def _send_async(self, request: httpx.Request) -> RawResponse:
        client = httpx.AsyncClient(**self._build_client_kwargs())
        try:
            response = await client.send(self._with_timeout(request))
        except httpx.HTTPError as e:
            logger.debug("Transport failure for %s: %s", request.url, e)
            return response_from_exception(e)
        finally:
            # Closing the client would also close an injected transport
            if self._transport is None:
                await client.aclose()

        return _convert_response(response)


def _task_outcome(task: asyncio.Task[RawResponse]) -> RawResponse:
    if task.cancelled():
        return RawResponse.from_transport_status(TransportStatus.CANCELLED)

    exc = task.exception()
    if exc is not None:
        return _unexpected_failure(exc)

    return task.result()


def _convert_response(response: httpx.Response) -> RawResponse:
    """Convert an httpx Response to RawResponse.

    Header keys are lowercased and repeated headers joined, so a lookup by
    name always yields one value.
    """
    return RawResponse(
        status_code=response.status_code,
        reason_phrase=response.reason_phrase,
        headers=dict(response.headers.items()),
        content=response.content,
    )


def _unexpected_failure(exc: BaseException) -> RawResponse:
    """Record an exception httpx did not classify as a generic transport failure."""
    logger.error("Unexpected error while sending request", exc_info=exc)
    return RawResponse.from_transport_status(TransportStatus.NONE, str(exc) or type(exc).__name__)
