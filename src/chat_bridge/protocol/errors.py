"""Error taxonomy shared by host and view sides of the bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""

    pass


class EnvelopeValidationError(BridgeError):
    """Inbound message did not match any envelope shape."""

    pass


class HandlerError(BridgeError):
    """A remote handler failed; the message is the one it reported."""

    def __init__(self, message: str, request_id: str | None = None, key: str | None = None):
        super().__init__(message)
        self.request_id = request_id
        self.key = key


class TransportError(BridgeError):
    """Delivery over a view transport failed."""

    pass


class RequestTimeoutError(BridgeError, TimeoutError):
    """A pending request was not settled within its timeout window."""

    def __init__(self, key: str, timeout: float, request_id: str | None = None):
        super().__init__(f"Request '{key}' timed out after {timeout:g}s")
        self.key = key
        self.timeout = timeout
        self.request_id = request_id


class RequestDisposedError(BridgeError):
    """A pending request was rejected because its owner was torn down."""

    def __init__(self, key: str, request_id: str | None = None):
        super().__init__(f"Request '{key}' rejected: client disposed")
        self.key = key
        self.request_id = request_id


class ProtocolError(BridgeError):
    """Incoming data violates the message contract (e.g. unknown role).

    Signals version skew upstream, so it is never swallowed.
    """

    pass


class QueryCancelledError(BridgeError):
    """Raised by a model query that observed cooperative cancellation."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Query cancelled: {reason}")
        self.reason = reason
