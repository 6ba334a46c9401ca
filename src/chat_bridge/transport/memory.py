"""In-process view transport.

Two linked endpoints form a pipe: whatever one end sends is handed to the
receiver registered on the other end. Messages are copied through a JSON
round-trip so both sides only ever see wire-shaped data, exactly as they
would over a socket.

Used for embedding a view in the host process and for tests.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..protocol.errors import TransportError
from .base import DisposeCallback, DisposeNotifier

if TYPE_CHECKING:
    from ..config import BridgeConfig
    from ..host import BridgeHost
    from ..sdk.client import ViewApiClient

logger = logging.getLogger(__name__)

Receiver = Callable[[dict[str, Any]], Awaitable[None] | None]


class InMemoryViewTransport:
    """One end of an in-memory pipe."""

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._peer: InMemoryViewTransport | None = None
        self._receiver: Receiver | None = None
        self._dispose = DisposeNotifier()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def set_receiver(self, receiver: Receiver) -> None:
        """Set the function that handles messages sent by the peer."""
        self._receiver = receiver

    def send(self, message: dict[str, Any]) -> Awaitable[None] | None:
        if self._closed:
            raise TransportError(f"Transport '{self.name}' is closed")
        peer = self._peer
        if peer is None or peer._closed or peer._receiver is None:
            raise TransportError(f"Transport '{self.name}' has no connected peer")

        payload = json.loads(json.dumps(message))
        return peer._receiver(payload)

    def on_dispose(self, callback: DisposeCallback) -> Callable[[], None]:
        return self._dispose.add(callback)

    async def close(self) -> None:
        """Close this end, then the peer."""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"In-memory transport '{self.name}' closed")
        self._dispose.fire()
        if self._peer is not None:
            await self._peer.close()


def create_pipe(
    name: str = "memory",
) -> tuple[InMemoryViewTransport, InMemoryViewTransport]:
    """Create two linked endpoints: (host side, view side)."""
    host_end = InMemoryViewTransport(f"{name}:host")
    view_end = InMemoryViewTransport(f"{name}:view")
    host_end._peer = view_end
    view_end._peer = host_end
    return host_end, view_end


def connect_in_memory(
    host: BridgeHost,
    view_id: str,
    view_type: str = "chat",
    config: BridgeConfig | None = None,
) -> ViewApiClient:
    """Attach an in-process view to a host.

    Registers the host end with the host's view registry and returns a
    client bound to the view end. Closing the client unregisters the view.

    Args:
        host: Host to attach to
        view_id: Identifier of the new view
        view_type: Kind of view (diagnostic only)
        config: Client config; defaults to the host's config

    Returns:
        Client ready to issue calls
    """
    from ..sdk.client import ViewApiClient

    host_end, view_end = create_pipe(view_id)
    client = ViewApiClient(
        view_end,
        view_id=view_id,
        view_type=view_type,
        session_id=host.config.session_id,
        config=config or host.config,
    )
    view_end.set_receiver(client.handle_message)
    host_end.set_receiver(lambda message: host.receive(message, host_end))
    host.register_view(view_id, host_end, view_type)
    return client
