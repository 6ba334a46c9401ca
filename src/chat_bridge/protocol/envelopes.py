"""Wire envelopes for the host/view protocol.

Every message on a view channel is one of four envelope kinds, tagged by
``type``:

- request:  {"type": "request", "id", "key", "params": [...], "context"?}
- response: {"type": "response", "id", "value"}
- error:    {"type": "error", "id", "value": "<message>"}
- event:    {"type": "event", "key", "value": [...]}

Inbound data is validated once at the boundary with ``parse_envelope``;
code past that point works with the typed models only.
"""

from __future__ import annotations

import itertools
import json
import uuid
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import EnvelopeValidationError

_request_counter = itertools.count(1)


def new_request_id() -> str:
    """Generate a correlation id unique for the life of the process."""
    return f"req_{next(_request_counter)}_{uuid.uuid4().hex[:8]}"


class RequestContext(BaseModel):
    """Diagnostic context attached to a request by the calling view.

    Field names are camelCase on the wire; Python code uses snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    view_id: str = Field(alias="viewId")
    view_type: str = Field(alias="viewType")
    timestamp: float  # epoch milliseconds
    session_id: str | None = Field(default=None, alias="sessionId")


class RequestEnvelope(BaseModel):
    """A view asking the host to run an operation."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["request"] = "request"
    id: str
    key: str
    params: list[Any]
    context: RequestContext | None = None

    @classmethod
    def create(
        cls,
        key: str,
        params: list[Any] | tuple[Any, ...] = (),
        context: RequestContext | None = None,
        request_id: str | None = None,
    ) -> RequestEnvelope:
        """Build a request with a fresh correlation id."""
        return cls(
            id=request_id or new_request_id(),
            key=key,
            params=list(params),
            context=context,
        )


class ResponseEnvelope(BaseModel):
    """Successful settlement of a request."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["response"] = "response"
    id: str
    value: Any


class ErrorEnvelope(BaseModel):
    """Failed settlement of a request; ``value`` is the error message."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["error"] = "error"
    id: str
    value: str

    @classmethod
    def from_exception(cls, request_id: str, exc: BaseException) -> ErrorEnvelope:
        return cls(id=request_id, value=str(exc) or type(exc).__name__)


class EventEnvelope(BaseModel):
    """Uncorrelated notification broadcast from host to views."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["event"] = "event"
    key: str
    value: list[Any]

    @classmethod
    def create(cls, key: str, *params: Any) -> EventEnvelope:
        return cls(key=key, value=list(params))


Envelope = Annotated[
    RequestEnvelope | ResponseEnvelope | ErrorEnvelope | EventEnvelope,
    Field(discriminator="type"),
]

_envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)


def parse_envelope(raw: str | bytes | Mapping[str, Any]) -> Envelope:
    """Validate raw inbound data into a typed envelope.

    Args:
        raw: A JSON text frame or an already-decoded mapping

    Returns:
        The matching envelope model

    Raises:
        EnvelopeValidationError: If the data is not JSON, not an object,
            has an unknown ``type``, or misses/mistypes a required field
    """
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EnvelopeValidationError(f"Invalid JSON: {e}") from e

    if not isinstance(raw, Mapping):
        raise EnvelopeValidationError(f"Envelope must be an object, got {type(raw).__name__}")

    try:
        return _envelope_adapter.validate_python(dict(raw))
    except ValidationError as e:
        raise EnvelopeValidationError(f"Malformed envelope: {e.error_count()} error(s): {e}") from e


def to_wire(envelope: Envelope) -> dict[str, Any]:
    """Serialize an envelope to its JSON-compatible wire form."""
    data = envelope.model_dump(mode="json", by_alias=True)
    if isinstance(envelope, RequestEnvelope):
        if envelope.context is None:
            data.pop("context", None)
        else:
            data["context"] = envelope.context.model_dump(
                mode="json", by_alias=True, exclude_none=True
            )
    return data
