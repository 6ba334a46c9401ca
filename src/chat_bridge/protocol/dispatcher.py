"""Action dispatcher - host-side request routing.

Validates inbound envelopes, routes requests by key to a capability map of
handlers, and sends exactly one response or error back for each request.
The dispatcher is generic over the capability map; concrete handlers are
supplied by the host.

Handler failures never reach transport code: they become error envelopes
carrying the exception message. Malformed input is logged and dropped.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic_core import PydanticSerializationError

from ..transport.base import ViewTransport
from .envelopes import (
    Envelope,
    ErrorEnvelope,
    RequestEnvelope,
    ResponseEnvelope,
    parse_envelope,
    to_wire,
)
from .errors import EnvelopeValidationError
from .operations import Operation, ViewEvent

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any] | Any]
Broadcast = Callable[..., Any]


@dataclass(frozen=True)
class Notification:
    """Secondary event broadcast after a successful request.

    ``build`` maps (request params, handler result) to the event params;
    returning None suppresses the broadcast.
    """

    event: str
    build: Callable[[list[Any], Any], list[Any] | None]


def _provider_changed(params: list[Any], result: Any) -> list[Any] | None:
    if isinstance(result, Mapping):
        if result.get("success") is False:
            return None
        return [result.get("provider"), result.get("model")]
    return list(params[:2])


def _history_saved(params: list[Any], result: Any) -> list[Any] | None:
    return [params[0] if params else []]


def _history_cleared(params: list[Any], result: Any) -> list[Any] | None:
    return [[]]


# Mutating operations that also tell every view what changed.
DEFAULT_NOTIFICATIONS: dict[str, Notification] = {
    Operation.CHANGE_PROVIDER.value: Notification(ViewEvent.PROVIDER_CHANGED.value, _provider_changed),
    Operation.SAVE_CHAT_HISTORY.value: Notification(ViewEvent.HISTORY_LOADED.value, _history_saved),
    Operation.CLEAR_CHAT_HISTORY.value: Notification(ViewEvent.HISTORY_LOADED.value, _history_cleared),
}


class ActionDispatcher:
    """Routes requests to handlers and replies on the originating transport.

    Usage:
        dispatcher = ActionDispatcher(
            {"getCurrentProvider": controller.get_current_provider},
            broadcast=views.broadcast,
        )
        await dispatcher.handle(raw_message, transport)
    """

    def __init__(
        self,
        handlers: Mapping[str, Handler] | None = None,
        broadcast: Broadcast | None = None,
        notifications: Mapping[str, Notification] | None = None,
    ) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self._broadcast = broadcast
        self._notifications = dict(DEFAULT_NOTIFICATIONS if notifications is None else notifications)

    @property
    def keys(self) -> list[str]:
        return list(self._handlers)

    def register(self, key: str | Operation, handler: Handler) -> None:
        """Add or replace the handler for an operation key."""
        key = key.value if isinstance(key, Operation) else key
        self._handlers[key] = handler

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, raw: Any, transport: ViewTransport) -> None:
        """Handle one inbound message from a view. Never raises."""
        try:
            envelope = parse_envelope(raw)
        except EnvelopeValidationError as e:
            logger.warning(f"Dropping malformed message: {e}")
            return

        if not isinstance(envelope, RequestEnvelope):
            logger.warning(f"Dropping unexpected '{envelope.type}' envelope from view")
            return

        logger.debug(f"Handling request: {envelope.key} (id={envelope.id})")

        reply = await self._invoke(envelope)
        await self._reply(transport, reply)

        if isinstance(reply, ResponseEnvelope):
            self._notify(envelope, reply.value)

    async def _invoke(self, request: RequestEnvelope) -> ResponseEnvelope | ErrorEnvelope:
        handler = self._handlers.get(request.key)
        if handler is None:
            logger.warning(f"No handler for operation '{request.key}'")
            return ErrorEnvelope(id=request.id, value=f"Unknown operation: {request.key}")

        try:
            result = handler(*request.params)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Handler for '{request.key}' failed (id={request.id})")
            return ErrorEnvelope.from_exception(request.id, e)

        return ResponseEnvelope(id=request.id, value=result)

    async def _reply(self, transport: ViewTransport, reply: Envelope) -> bool:
        """Send the settlement for a request. Failures are logged, never retried."""
        try:
            message = to_wire(reply)
        except PydanticSerializationError as e:
            logger.error(f"Result for request {reply.id} is not serializable: {e}")
            message = to_wire(ErrorEnvelope(id=reply.id, value=f"Unserializable result: {e}"))

        try:
            sent = transport.send(message)
            if inspect.isawaitable(sent):
                await sent
        except Exception as e:
            logger.error(f"Failed to send {reply.type} for request {reply.id}: {e}")
            return False
        return True

    def _notify(self, request: RequestEnvelope, result: Any) -> None:
        notification = self._notifications.get(request.key)
        if notification is None or self._broadcast is None:
            return
        try:
            params = notification.build(request.params, result)
            if params is not None:
                self._broadcast(notification.event, *params)
        except Exception:
            logger.exception(f"Failed to broadcast '{notification.event}' after '{request.key}'")
