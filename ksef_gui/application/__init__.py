"""Application services."""

from .details import parse_invoice_details
from .events import EventHub, Subscription
from .orchestrator import JobOrchestrator
from .tokens import TokenCache

__all__ = [
    "EventHub",
    "JobOrchestrator",
    "Subscription",
    "TokenCache",
    "parse_invoice_details",
]
