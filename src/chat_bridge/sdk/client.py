"""View-side API client.

Issues correlated requests to the host over a view transport and routes
inbound envelopes: responses and errors settle pending calls, events go to
registered listeners.

Usage:
    client = ViewApiClient(transport, view_id="panel-1")
    transport.set_receiver(client.handle_message)

    async with client:
        provider = await client.get_current_provider()
        client.add_listener(ViewEvent.CHAT_RESPONSE_CHUNK, on_chunk)
        await client.send_chat_message("Hello")

Every host operation has an explicit wrapper method below; ``call`` is
the single place correlation ids and pending entries are managed.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from ..config import BridgeConfig
from ..protocol.envelopes import (
    ErrorEnvelope,
    EventEnvelope,
    RequestContext,
    RequestEnvelope,
    ResponseEnvelope,
    parse_envelope,
    to_wire,
)
from ..protocol.errors import EnvelopeValidationError, HandlerError, TransportError
from ..protocol.operations import Operation, ViewEvent
from ..transport.base import ViewTransport
from .pending import RequestRegistry

logger = logging.getLogger(__name__)

EventListener = Callable[..., Any]


class ViewApiClient:
    """Client for calling host operations from a view."""

    def __init__(
        self,
        transport: ViewTransport,
        *,
        view_id: str,
        view_type: str = "chat",
        session_id: str | None = None,
        config: BridgeConfig | None = None,
    ) -> None:
        self.config = config or BridgeConfig()
        self.view_id = view_id
        self.view_type = view_type
        self.session_id = session_id
        self._transport = transport
        self._requests = RequestRegistry(self.config.timeout_for)
        self._listeners: dict[str, list[EventListener]] = {}
        self._sweeper_task: asyncio.Task[None] | None = None
        self._closed = False

        # Requests can never settle once the channel is gone
        transport.on_dispose(self._on_transport_disposed)

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    @property
    def requests(self) -> RequestRegistry:
        return self._requests

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def __aenter__(self) -> ViewApiClient:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def start(self) -> None:
        """Start the background sweep of stale requests."""
        if self._sweeper_task is None and self.config.sweep_interval > 0:
            self._sweeper_task = asyncio.create_task(
                self._requests.run_sweeper(self.config.sweep_interval)
            )

    async def aclose(self) -> None:
        """Reject everything still pending, then close the transport."""
        if self._closed:
            return
        self._closed = True

        if self._sweeper_task is not None:
            self._sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper_task
            self._sweeper_task = None

        self._requests.dispose()
        await self._transport.close()
        self._listeners.clear()

    def _on_transport_disposed(self) -> None:
        if not self._requests.is_disposed:
            logger.info(f"Transport for view {self.view_id} closed; rejecting pending requests")
            self._requests.dispose()

    # =========================================================================
    # Calls
    # =========================================================================

    async def call(self, key: str | Operation, *params: Any, timeout: float | None = None) -> Any:
        """Invoke a host operation and wait for its result.

        Args:
            key: Operation key
            *params: Positional parameters for the handler
            timeout: Override of the per-key timeout policy (0 = none)

        Returns:
            The response value

        Raises:
            HandlerError: The host handler failed
            RequestTimeoutError: No settlement within the timeout
            RequestDisposedError: The client was closed first
            TransportError: The request could not be sent
        """
        key = key.value if isinstance(key, Operation) else key
        envelope = RequestEnvelope.create(key, params, context=self._context())
        future = self._requests.register(envelope.id, key, timeout)

        try:
            sent = self._transport.send(to_wire(envelope))
            if inspect.isawaitable(sent):
                await sent
        except Exception as e:
            logger.warning(f"Failed to send request {envelope.id} ({key}): {e}")
            self._requests.reject(envelope.id, TransportError(f"Failed to send '{key}': {e}"))

        return await future

    def _context(self) -> RequestContext:
        return RequestContext(
            view_id=self.view_id,
            view_type=self.view_type,
            timestamp=time.time() * 1000,
            session_id=self.session_id,
        )

    # =========================================================================
    # Inbound
    # =========================================================================

    def handle_message(self, raw: Any) -> None:
        """Route one inbound wire message. Malformed input is logged and dropped."""
        try:
            envelope = parse_envelope(raw)
        except EnvelopeValidationError as e:
            logger.warning(f"Dropping malformed message: {e}")
            return

        match envelope:
            case ResponseEnvelope():
                self._requests.resolve(envelope.id, envelope.value)
            case ErrorEnvelope():
                entry = self._requests.get(envelope.id)
                key = entry.key if entry else None
                self._requests.reject(envelope.id, HandlerError(envelope.value, envelope.id, key))
            case EventEnvelope():
                self._emit(envelope.key, envelope.value)
            case RequestEnvelope():
                logger.warning(f"Views do not serve requests; dropping '{envelope.key}'")

    # =========================================================================
    # Events
    # =========================================================================

    def add_listener(self, key: str | ViewEvent, listener: EventListener) -> Callable[[], None]:
        """Listen for a view event; listener receives the event params.

        Use ``"*"`` to receive every event as ``listener(key, *params)``.

        Returns:
            Function that removes the listener
        """
        key = key.value if isinstance(key, ViewEvent) else key
        self._listeners.setdefault(key, []).append(listener)

        def remove() -> None:
            self.remove_listener(key, listener)

        return remove

    def remove_listener(self, key: str | ViewEvent, listener: EventListener) -> None:
        key = key.value if isinstance(key, ViewEvent) else key
        listeners = self._listeners.get(key, [])
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, key: str, params: list[Any]) -> None:
        for listener in list(self._listeners.get(key, [])):
            self._invoke(listener, key, *params)
        for listener in list(self._listeners.get("*", [])):
            self._invoke(listener, key, key, *params)

    def _invoke(self, listener: EventListener, key: str, *args: Any) -> None:
        try:
            result = listener(*args)
            if inspect.isawaitable(result):
                asyncio.ensure_future(result).add_done_callback(self._log_listener_failure)
        except Exception:
            logger.exception(f"Error in listener for '{key}'")

    @staticmethod
    def _log_listener_failure(future: asyncio.Future[Any]) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Async event listener failed: {future.exception()}")

    # =========================================================================
    # Operations
    # =========================================================================

    # Chat

    async def send_chat_message(self, prompt: str, history: list[dict[str, Any]] | None = None) -> Any:
        if history is None:
            return await self.call(Operation.SEND_CHAT_MESSAGE, prompt)
        return await self.call(Operation.SEND_CHAT_MESSAGE, prompt, history)

    async def stop_chat(self) -> Any:
        return await self.call(Operation.STOP_CHAT)

    # History

    async def save_chat_history(self, history: list[dict[str, Any]]) -> Any:
        return await self.call(Operation.SAVE_CHAT_HISTORY, history)

    async def load_chat_history(self) -> list[dict[str, Any]]:
        return await self.call(Operation.LOAD_CHAT_HISTORY)

    async def clear_chat_history(self) -> Any:
        return await self.call(Operation.CLEAR_CHAT_HISTORY)

    # Provider

    async def get_current_provider(self) -> dict[str, Any]:
        return await self.call(Operation.GET_CURRENT_PROVIDER)

    async def change_provider(self, provider_id: str, model: str) -> dict[str, Any]:
        return await self.call(Operation.CHANGE_PROVIDER, provider_id, model)

    # Editor chrome

    async def select_file(self) -> str | None:
        return await self.call(Operation.SELECT_FILE)

    async def select_folder(self) -> str | None:
        return await self.call(Operation.SELECT_FOLDER)

    async def select_images(self) -> list[Any]:
        return await self.call(Operation.SELECT_IMAGES)

    async def show_information_message(self, message: str) -> Any:
        return await self.call(Operation.SHOW_INFORMATION_MESSAGE, message)

    async def show_error_message(self, message: str) -> Any:
        return await self.call(Operation.SHOW_ERROR_MESSAGE, message)

    async def execute_command(self, command: str, *args: Any) -> Any:
        return await self.call(Operation.EXECUTE_COMMAND, command, *args)

    async def check_canvas_status(self) -> Any:
        return await self.call(Operation.CHECK_CANVAS_STATUS)

    async def open_canvas(self) -> Any:
        return await self.call(Operation.OPEN_CANVAS)

    async def initialize_project(self) -> Any:
        return await self.call(Operation.INITIALIZE_PROJECT)

    async def get_base64_image(self, file_path: str) -> Any:
        return await self.call(Operation.GET_BASE64_IMAGE, file_path)

    async def save_image_to_moodboard(self, image: dict[str, Any]) -> Any:
        return await self.call(Operation.SAVE_IMAGE_TO_MOODBOARD, image)
