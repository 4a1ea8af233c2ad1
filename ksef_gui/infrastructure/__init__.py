"""Infrastructure layer exports."""

from .config import ConfigStore, ProfileConfig
from .ksef import (
    Authenticator,
    InvoiceBackend,
    InvoicePage,
    KsefClient,
    RemoteInvoiceService,
    client_for_profile,
)
from .prefs import InMemoryPreferencesStore, JsonPreferencesStore, PreferencesStore
from .renderer import DocumentRenderer, PdfGeneratorRenderer
from .results import ResultCache
from .tokens import TokenStore

__all__ = [
    "Authenticator",
    "ConfigStore",
    "DocumentRenderer",
    "InMemoryPreferencesStore",
    "InvoiceBackend",
    "InvoicePage",
    "JsonPreferencesStore",
    "KsefClient",
    "PdfGeneratorRenderer",
    "PreferencesStore",
    "ProfileConfig",
    "RemoteInvoiceService",
    "ResultCache",
    "TokenStore",
    "client_for_profile",
]
