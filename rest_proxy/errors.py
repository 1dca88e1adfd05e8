"""Exception hierarchy for rest-proxy.

Two families hang off RestProxyError:

- CallError: the outcome of an execution that did not succeed. These travel
  through the normal result channel of whichever execution mode was used.
- ContractError: the caller broke a usage rule (started a second execution,
  used an unbound URL, finished an invocation twice). These are raised
  immediately and never touch call state.
"""

from __future__ import annotations

from enum import Enum


class RestProxyError(Exception):
    """Base class for rest-proxy errors."""


class ErrorKind(str, Enum):
    """Closed classification of failed executions."""

    CANCELLED = "cancelled"
    RESOLUTION_FAILURE = "resolution_failure"
    CONNECTION_FAILURE = "connection_failure"
    TLS_FAILURE = "tls_failure"
    IO_FAILURE = "io_failure"
    GENERIC_TRANSPORT_FAILURE = "generic_transport_failure"
    HTTP_STATUS = "http_status"


class CallError(RestProxyError):
    """An execution finished without a 2xx response."""

    kind: ErrorKind = ErrorKind.GENERIC_TRANSPORT_FAILURE

    def __init__(self, reason: str, status_code: int = 0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class CallCancelledError(CallError):
    kind = ErrorKind.CANCELLED


class ResolutionError(CallError):
    """Host name (or proxy host name) could not be resolved."""

    kind = ErrorKind.RESOLUTION_FAILURE


class ConnectionFailedError(CallError):
    kind = ErrorKind.CONNECTION_FAILURE


class TLSError(CallError):
    kind = ErrorKind.TLS_FAILURE


class IOFailureError(CallError):
    kind = ErrorKind.IO_FAILURE


class TransportFailureError(CallError):
    """Catch-all for malformed responses, "try again" and unclassified failures."""

    kind = ErrorKind.GENERIC_TRANSPORT_FAILURE


class HTTPStatusError(CallError):
    """The server answered with a status outside 200-299."""

    kind = ErrorKind.HTTP_STATUS

    def __str__(self) -> str:
        return f"HTTP {self.status_code}: {self.reason}"


class ContractError(RestProxyError):
    """Raised when the API is used in a way its contract forbids."""


class CallInProgressError(ContractError):
    """Raised when starting an execution while another one is outstanding."""


class UnboundURLError(ContractError):
    """Raised when the proxy requires a bound URL and none has been bound."""


class InvocationStateError(ContractError):
    """Raised when invoke_finish is called too early or more than once."""


class ConfigError(RestProxyError):
    """Raised when configuration loading fails."""


class PayloadError(RestProxyError):
    """Raised when a response payload is not the document the caller expects."""
