"""Protocol layer - envelopes, vocabulary and dispatch.

Transport-agnostic. The same envelopes and dispatcher serve in-memory,
WebSocket and any other view channel.
"""

from .dispatcher import DEFAULT_NOTIFICATIONS, ActionDispatcher, Handler, Notification
from .envelopes import (
    Envelope,
    ErrorEnvelope,
    EventEnvelope,
    RequestContext,
    RequestEnvelope,
    ResponseEnvelope,
    new_request_id,
    parse_envelope,
    to_wire,
)
from .errors import (
    BridgeError,
    EnvelopeValidationError,
    HandlerError,
    ProtocolError,
    QueryCancelledError,
    RequestDisposedError,
    RequestTimeoutError,
    TransportError,
)
from .operations import DEFAULT_TIMEOUT, DEFAULT_TIMEOUTS, Operation, ViewEvent, resolve_timeout

__all__ = [
    # Envelopes
    "Envelope",
    "RequestContext",
    "RequestEnvelope",
    "ResponseEnvelope",
    "ErrorEnvelope",
    "EventEnvelope",
    "new_request_id",
    "parse_envelope",
    "to_wire",
    # Vocabulary
    "Operation",
    "ViewEvent",
    "DEFAULT_TIMEOUT",
    "DEFAULT_TIMEOUTS",
    "resolve_timeout",
    # Dispatch
    "ActionDispatcher",
    "Handler",
    "Notification",
    "DEFAULT_NOTIFICATIONS",
    # Errors
    "BridgeError",
    "EnvelopeValidationError",
    "HandlerError",
    "TransportError",
    "RequestTimeoutError",
    "RequestDisposedError",
    "ProtocolError",
    "QueryCancelledError",
]
