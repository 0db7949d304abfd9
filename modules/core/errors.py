from __future__ import annotations


class ProviderErrorCategory:
    RATE_LIMITED = "rate_limited"
    AUTH_FAILED = "auth_failed"
    UNAVAILABLE = "unavailable"
    BAD_REQUEST = "bad_request"
    NETWORK_ERROR = "network_error"
    MISCONFIGURED = "misconfigured"
    UNKNOWN = "unknown"


def classify_status(status_code: int | None) -> str:
    if status_code is None:
        return ProviderErrorCategory.NETWORK_ERROR
    if status_code == 429:
        return ProviderErrorCategory.RATE_LIMITED
    if status_code in (401, 403):
        return ProviderErrorCategory.AUTH_FAILED
    if status_code >= 500:
        return ProviderErrorCategory.UNAVAILABLE
    if 400 <= status_code < 500:
        return ProviderErrorCategory.BAD_REQUEST
    return ProviderErrorCategory.UNKNOWN


class VoiceError(Exception):
    """Base class for failures a session turns into an ``error`` frame."""

    public_message = "Something went wrong"


class TransportError(VoiceError):
    """Malformed or out-of-order client message. Never surfaced to the client."""

    public_message = "Invalid message"


class ConversionError(VoiceError):
    public_message = "Could not convert audio"

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ProviderError(VoiceError):
    def __init__(
        self,
        provider: str,
        detail: str = "",
        status_code: int | None = None,
        category: str | None = None,
    ):
        super().__init__(f"{provider} error status={status_code}: {detail}".strip())
        self.provider = provider
        self.detail = detail
        self.status_code = status_code
        self.category = category or classify_status(status_code)

    @property
    def public_message(self) -> str:  # type: ignore[override]
        if self.category == ProviderErrorCategory.RATE_LIMITED:
            return f"The {self.provider} service is busy, please try again shortly"
        return f"The {self.provider} service failed"


class ResourceError(VoiceError):
    """Filesystem cleanup failure. Logged and swallowed."""
