"""Domain layer definitions."""

from .errors import (
    AuthenticationError,
    KsefGuiError,
    ProfileError,
    RateLimitError,
    RemoteServiceError,
    RenderError,
    ValidationError,
)
from .invoices import (
    FORMAT_EXTENSIONS,
    FORMAT_RAW,
    FORMAT_RENDERED,
    FORMAT_SUMMARY,
    CachedResults,
    CertificateSettings,
    Credential,
    DownloadJob,
    Identity,
    Profile,
    ProgressEvent,
    ResultItem,
    SearchQuery,
)

__all__ = [
    "AuthenticationError",
    "CachedResults",
    "CertificateSettings",
    "Credential",
    "DownloadJob",
    "FORMAT_EXTENSIONS",
    "FORMAT_RAW",
    "FORMAT_RENDERED",
    "FORMAT_SUMMARY",
    "Identity",
    "KsefGuiError",
    "Profile",
    "ProfileError",
    "ProgressEvent",
    "RateLimitError",
    "RemoteServiceError",
    "RenderError",
    "ResultItem",
    "SearchQuery",
    "ValidationError",
]
