"""View-side SDK - call host operations and listen for host events."""

from .client import EventListener, ViewApiClient
from .pending import PendingRequest, RequestRegistry

__all__ = [
    "ViewApiClient",
    "EventListener",
    "RequestRegistry",
    "PendingRequest",
]
