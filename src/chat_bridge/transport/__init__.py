"""View transports - channels between the host and individual views."""

from .base import DisposeNotifier, ViewTransport
from .memory import InMemoryViewTransport, connect_in_memory, create_pipe
from .websocket import WebSocketViewTransport

__all__ = [
    "ViewTransport",
    "DisposeNotifier",
    "InMemoryViewTransport",
    "create_pipe",
    "connect_in_memory",
    "WebSocketViewTransport",
]
