"""Internal data models for rest-proxy.

All models use Pydantic v2 and reject unknown fields.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Parameters
# =============================================================================


class ParamKind(str, Enum):
    """Whether a parameter is plain text or a binary blob."""

    STRING = "string"
    BLOB = "blob"


class Param(BaseModel):
    """One named request value.

    String parameters hold their UTF-8 encoded text in ``content``. Blob
    parameters additionally carry a content type and an optional file name,
    which become the multipart part headers.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(description="Parameter name (unique within a ParamSet)")
    kind: ParamKind = Field(description="STRING or BLOB")
    content: bytes = Field(description="Raw parameter content")
    content_type: str | None = Field(default=None, description="MIME type of the content")
    file_name: str | None = Field(default=None, description="File name sent with blob parts")

    @model_validator(mode="after")
    def validate_string_content(self) -> Param:
        if self.kind is ParamKind.STRING:
            try:
                self.content.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ValueError(f"String parameter '{self.name}' is not valid UTF-8: {e}") from e
        return self

    @classmethod
    def string(cls, name: str, value: str) -> Param:
        """Create a text parameter."""
        return cls(
            name=name,
            kind=ParamKind.STRING,
            content=value.encode("utf-8"),
            content_type="text/plain",
        )

    @classmethod
    def blob(
        cls,
        name: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        file_name: str | None = None,
    ) -> Param:
        """Create a binary parameter sent as a multipart file part."""
        return cls(
            name=name,
            kind=ParamKind.BLOB,
            content=content,
            content_type=content_type,
            file_name=file_name,
        )

    @property
    def length(self) -> int:
        return len(self.content)

    @property
    def is_string(self) -> bool:
        return self.kind is ParamKind.STRING

    @property
    def value(self) -> str:
        """Decoded text of a string parameter."""
        return self.content.decode("utf-8")


# =============================================================================
# Service configuration
# =============================================================================


class ProxyConfig(BaseModel):
    """Configuration shared by every call created from one proxy."""

    model_config = ConfigDict(extra="forbid")

    url_format: str = Field(description="Base URL, or a format string when binding is required")
    binding_required: bool = Field(
        default=False, description="Whether url_format has placeholders that must be bound"
    )
    user_agent: str | None = Field(default=None, description="Default User-Agent header")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


# =============================================================================
# Transport results
# =============================================================================


class TransportStatus(IntEnum):
    """Status values below 100 that stand for "no HTTP response occurred".

    Numbering follows the classic libsoup transport codes so that logs stay
    comparable with other clients of the same services.
    """

    NONE = 0
    CANCELLED = 1
    CANT_RESOLVE = 2
    CANT_RESOLVE_PROXY = 3
    CANT_CONNECT = 4
    CANT_CONNECT_PROXY = 5
    SSL_FAILED = 6
    IO_ERROR = 7
    MALFORMED = 8
    TRY_AGAIN = 9


TRANSPORT_REASONS: dict[TransportStatus, str] = {
    TransportStatus.NONE: "Transport failure",
    TransportStatus.CANCELLED: "Cancelled",
    TransportStatus.CANT_RESOLVE: "Cannot resolve hostname",
    TransportStatus.CANT_RESOLVE_PROXY: "Cannot resolve proxy hostname",
    TransportStatus.CANT_CONNECT: "Cannot connect to destination",
    TransportStatus.CANT_CONNECT_PROXY: "Cannot connect to proxy",
    TransportStatus.SSL_FAILED: "SSL handshake failed",
    TransportStatus.IO_ERROR: "Connection terminated unexpectedly",
    TransportStatus.MALFORMED: "Message corrupt",
    TransportStatus.TRY_AGAIN: "Try again",
}


class RawResponse(BaseModel):
    """What the executor hands back for one request.

    ``status_code`` is a real HTTP status when a round trip completed, or a
    TransportStatus sentinel (below 100) when it did not. Header keys are
    lowercase; repeated headers are joined with ", ".
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status, or a TransportStatus below 100")
    reason_phrase: str = Field(default="", description="Server reason phrase or transport reason")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers")
    content: bytes = Field(default=b"", description="Fully buffered response body")

    @classmethod
    def from_transport_status(cls, status: TransportStatus, detail: str | None = None) -> RawResponse:
        """Build a response for a request that never produced an HTTP status."""
        reason = TRANSPORT_REASONS[status]
        if detail:
            reason = f"{reason}: {detail}"
        return cls(status_code=int(status), reason_phrase=reason)

    @property
    def is_transport_failure(self) -> bool:
        return self.status_code < 100
