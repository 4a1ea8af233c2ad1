"""Error taxonomy shared by the service layers."""
from __future__ import annotations


class KsefGuiError(RuntimeError):
    """Base class for errors raised by this package."""


class ValidationError(KsefGuiError):
    """Raised before any remote call when input cannot be used."""


class ProfileError(KsefGuiError):
    """Raised when a profile is missing or cannot be turned into a client."""


class AuthenticationError(KsefGuiError):
    """Raised when the remote authentication flow fails or times out."""


class RemoteServiceError(KsefGuiError):
    """Raised when the remote service answers with an unexpected status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(RemoteServiceError):
    """Raised when the remote service signals too many requests."""

    def __init__(self, recommended_delay: float, message: str | None = None) -> None:
        super().__init__(message or f"Rate limited, retry after {recommended_delay:.0f}s", status_code=429)
        self.recommended_delay = recommended_delay


class RenderError(KsefGuiError):
    """Raised when the document renderer cannot produce output."""
