"""Error Mapper - Turns transport outcomes into CallError instances.

Two steps:

1. classify_exception(): an httpx exception raised while sending becomes a
   TransportStatus sentinel (a status code below 100).
2. error_for_status(): a (status, reason) pair becomes either None (2xx) or
   the matching CallError subclass.
"""

from __future__ import annotations

import socket
import ssl

import httpx

from rest_proxy.errors import (
    CallCancelledError,
    CallError,
    ConnectionFailedError,
    HTTPStatusError,
    IOFailureError,
    ResolutionError,
    TLSError,
    TransportFailureError,
)
from rest_proxy.models import TRANSPORT_REASONS, RawResponse, TransportStatus


_TRANSPORT_ERRORS: dict[TransportStatus, type[CallError]] = {
    TransportStatus.CANCELLED: CallCancelledError,
    TransportStatus.CANT_RESOLVE: ResolutionError,
    TransportStatus.CANT_RESOLVE_PROXY: ResolutionError,
    TransportStatus.CANT_CONNECT: ConnectionFailedError,
    TransportStatus.CANT_CONNECT_PROXY: ConnectionFailedError,
    TransportStatus.SSL_FAILED: TLSError,
    TransportStatus.IO_ERROR: IOFailureError,
}


def _exception_chain(exc: BaseException) -> list[BaseException]:
    """The exception followed by its causes/contexts, oldest last."""
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def classify_exception(exc: httpx.HTTPError) -> TransportStatus:
    """Map an httpx exception to the sentinel status it stands for.

    httpx re-raises low level failures from httpcore, which in turn chains
    the original socket/ssl exception. DNS and TLS failures are recognised
    by walking that chain.
    """
    chain = _exception_chain(exc)
    is_proxy = isinstance(exc, httpx.ProxyError)

    if any(isinstance(e, socket.gaierror) for e in chain):
        return TransportStatus.CANT_RESOLVE_PROXY if is_proxy else TransportStatus.CANT_RESOLVE
    if any(isinstance(e, ssl.SSLError) for e in chain):
        return TransportStatus.SSL_FAILED
    if is_proxy:
        return TransportStatus.CANT_CONNECT_PROXY
    # ConnectTimeout is a TimeoutException, so it must be checked first
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return TransportStatus.CANT_CONNECT
    if isinstance(exc, (httpx.TimeoutException, httpx.ReadError, httpx.WriteError, httpx.CloseError)):
        return TransportStatus.IO_ERROR
    if isinstance(exc, (httpx.ProtocolError, httpx.DecodingError)):
        return TransportStatus.MALFORMED
    return TransportStatus.NONE


def response_from_exception(exc: httpx.HTTPError) -> RawResponse:
    """Build the RawResponse recorded for a request that raised."""
    return RawResponse.from_transport_status(classify_exception(exc), str(exc) or None)


def error_for_status(status_code: int, reason: str) -> CallError | None:
    """Return the error for a finished request, or None on success.

    Codes below 100 are TransportStatus sentinels, not HTTP statuses. Any
    sentinel without a dedicated class (malformed, try again, unknown) is a
    generic transport failure. An empty reason is replaced by the standard
    phrase for the code, so every error carries one.
    """
    if status_code < 100:
        try:
            status = TransportStatus(status_code)
        except ValueError:
            status = TransportStatus.NONE
        error_class = _TRANSPORT_ERRORS.get(status, TransportFailureError)
        return error_class(reason or TRANSPORT_REASONS[status], status_code)

    if 200 <= status_code < 300:
        return None

    # Unregistered codes and blank status lines have no phrase
    reason = reason or httpx.codes.get_reason_phrase(status_code) or f"Unknown status {status_code}"
    return HTTPStatusError(reason, status_code)


def error_for_response(response: RawResponse) -> CallError | None:
    return error_for_status(response.status_code, response.reason_phrase)
