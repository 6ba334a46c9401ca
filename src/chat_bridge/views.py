"""View registry - tracks connected views and broadcasts events to them.

A view that fails a delivery is pruned. Failures can surface two ways:
the transport's ``send`` raising immediately, or the awaitable it
returned raising later. Synchronous failures are collected during the
broadcast and removed after the loop; asynchronous failures prune from a
completion callback. Either way one view's failure never affects the
others.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

from .protocol.envelopes import EventEnvelope, to_wire
from .transport.base import ViewTransport

logger = logging.getLogger(__name__)


@dataclass
class ConnectedView:
    """A registered view and its channel."""

    view_id: str
    transport: ViewTransport
    view_type: str = "chat"
    connected_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    _remove_dispose_hook: Callable[[], None] | None = field(default=None, repr=False)


class ViewRegistry:
    """Registry of connected views.

    Owns the connected-view table exclusively; other components go through
    ``register_view``/``unregister_view``/``broadcast``.
    """

    def __init__(self) -> None:
        self._views: dict[str, ConnectedView] = {}
        self._deliveries: set[asyncio.Future[Any]] = set()

    # =========================================================================
    # Registration
    # =========================================================================

    def register_view(
        self,
        view_id: str,
        transport: ViewTransport,
        view_type: str = "chat",
    ) -> ConnectedView:
        """Record a view and unregister it automatically when its transport closes.

        Re-registering an id with a different transport replaces the old entry.
        """
        existing = self._views.get(view_id)
        if existing is not None:
            if existing.transport is transport:
                return existing
            logger.info(f"View {view_id} re-registered with a new transport")
            self._remove(existing)

        view = ConnectedView(view_id=view_id, transport=transport, view_type=view_type)
        self._views[view_id] = view
        view._remove_dispose_hook = transport.on_dispose(partial(self._on_disposed, view))

        logger.info(f"View registered: {view_id} ({view_type}), {len(self._views)} connected")
        return view

    def unregister_view(self, view_id: str) -> bool:
        """Remove a view. Returns False if it was not registered."""
        view = self._views.get(view_id)
        if view is None:
            return False
        self._remove(view)
        logger.info(f"View unregistered: {view_id}, {len(self._views)} connected")
        return True

    def get_view(self, view_id: str) -> ConnectedView | None:
        return self._views.get(view_id)

    def view_ids(self) -> list[str]:
        return list(self._views)

    def get_connected_count(self) -> int:
        return len(self._views)

    # =========================================================================
    # Broadcast
    # =========================================================================

    def broadcast(self, key: str, *params: Any) -> int:
        """Send an event to every registered view without waiting.

        Returns:
            Number of views the event was handed to (views whose send
            raised synchronously are not counted)
        """
        message = to_wire(EventEnvelope.create(key, *params))
        failed: list[ConnectedView] = []
        handed_off = 0

        for view in list(self._views.values()):
            try:
                result = view.transport.send(message)
            except Exception as e:
                logger.warning(f"Delivery of '{key}' to view {view.view_id} failed: {e}")
                failed.append(view)
                continue

            handed_off += 1
            if inspect.isawaitable(result):
                self._track(view, key, result)

        for view in failed:
            self._prune(view)

        logger.debug(f"Broadcast '{key}' to {handed_off} view(s)")
        return handed_off

    def _track(self, view: ConnectedView, key: str, pending: Any) -> None:
        future = asyncio.ensure_future(pending)
        self._deliveries.add(future)
        future.add_done_callback(partial(self._on_delivery_done, view, key))

    def _on_delivery_done(self, view: ConnectedView, key: str, future: asyncio.Future[Any]) -> None:
        self._deliveries.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"Delivery of '{key}' to view {view.view_id} failed: {error}")
            self._prune(view)

    async def drain(self) -> None:
        """Wait for in-flight asynchronous deliveries to finish."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close_all(self) -> None:
        """Unregister every view and close its transport."""
        views = list(self._views.values())
        for view in views:
            self._remove(view)
        for view in views:
            try:
                await view.transport.close()
            except Exception:
                logger.exception(f"Error closing transport for view {view.view_id}")

    def _on_disposed(self, view: ConnectedView) -> None:
        if self._views.get(view.view_id) is view:
            self._remove(view)
            logger.info(f"View disposed: {view.view_id}, {len(self._views)} connected")

    def _prune(self, view: ConnectedView) -> None:
        if self._views.get(view.view_id) is view:
            self._remove(view)
            logger.warning(f"Pruned view {view.view_id}, {len(self._views)} connected")

    def _remove(self, view: ConnectedView) -> None:
        self._views.pop(view.view_id, None)
        if view._remove_dispose_hook is not None:
            view._remove_dispose_hook()
            view._remove_dispose_hook = None
