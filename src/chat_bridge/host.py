"""Bridge host - composes the host-side components.

The host owns the view registry, the dispatcher, and the chat controller
with its persistence and provider settings. Each inbound request runs in
its own task, so a long ``sendChatMessage`` never blocks a ``stopChat``
arriving behind it on the same channel.

Usage:
    host = BridgeHost(BridgeConfig.from_env(), query=my_model_query)
    client = connect_in_memory(host, "panel-1")
    await client.send_chat_message("Hello")
    await host.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from .chat.controller import ChatController, ProviderSettings
from .chat.history_store import FileHistoryStore, HistoryStore, InMemoryHistoryStore
from .chat.query import SHUTDOWN, EchoModelQuery, ModelQuery
from .chat.reducer import StreamReducer
from .config import BridgeConfig
from .protocol.dispatcher import ActionDispatcher
from .transport.base import ViewTransport
from .views import ConnectedView, ViewRegistry

logger = logging.getLogger(__name__)

# Seconds a cancelled query gets to report chatStopped before its task is cancelled
SHUTDOWN_GRACE = 1.0


class BridgeHost:
    """Host process side of the bridge."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        query: ModelQuery | None = None,
        store: HistoryStore | None = None,
        provider: ProviderSettings | None = None,
        extra_handlers: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.views = ViewRegistry()

        if store is None:
            if self.config.storage_dir is not None:
                store = FileHistoryStore(self.config.storage_dir)
            else:
                store = InMemoryHistoryStore()
        self.store = store

        self.controller = ChatController(
            self.store,
            query or EchoModelQuery(),
            self.views.broadcast,
            session_id=self.config.session_id,
            provider=provider or ProviderSettings(self.config.provider_id, self.config.model),
            reducer=StreamReducer(
                estimated_duration=self.config.tool_estimated_duration,
                session_id=self.config.session_id,
            ),
        )

        self.dispatcher = ActionDispatcher(self.controller.capabilities(), broadcast=self.views.broadcast)
        for key, handler in (extra_handlers or {}).items():
            self.dispatcher.register(key, handler)

        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Views
    # =========================================================================

    def register_view(self, view_id: str, transport: ViewTransport, view_type: str = "chat") -> ConnectedView:
        return self.views.register_view(view_id, transport, view_type)

    def unregister_view(self, view_id: str) -> bool:
        return self.views.unregister_view(view_id)

    def broadcast(self, key: str, *params: Any) -> int:
        return self.views.broadcast(key, *params)

    # =========================================================================
    # Inbound
    # =========================================================================

    def receive(self, raw: Any, transport: ViewTransport) -> None:
        """Accept one inbound message from a view; dispatch runs in the background."""
        if self._closed:
            logger.warning("Host is shut down; dropping inbound message")
            return
        task = asyncio.create_task(self.dispatcher.handle(raw, transport))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until in-flight dispatches and event deliveries finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.views.drain()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def shutdown(self) -> None:
        """Stop queries, settle or cancel in-flight dispatches, then close views."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down bridge host")

        self.controller.cancel_all(SHUTDOWN)

        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        await self.views.drain()
        await self.views.close_all()
