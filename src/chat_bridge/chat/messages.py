"""Conversation transcript model.

Messages and parts are frozen: a transcript is only ever changed by
building a new one. Part field names are camelCase on the wire
(``toolCallId``) and metadata keys are snake_case (``is_loading``), matching
what views already store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..protocol.errors import ProtocolError

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant", "tool"]
ROLES: frozenset[str] = frozenset(("system", "user", "assistant", "tool"))


class _Part(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class TextPart(_Part):
    type: Literal["text"] = "text"
    text: str


class ToolCallPart(_Part):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(default="unknown", alias="toolName")
    input: Any = Field(default_factory=dict)


class ToolResultPart(_Part):
    """Result of a tool call. ``output`` is a normalized ``{type, value}`` union."""

    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(default="unknown", alias="toolName")
    output: dict[str, Any]


Part = Annotated[TextPart | ToolCallPart | ToolResultPart, Field(discriminator="type")]
PART_TYPES: frozenset[str] = frozenset(("text", "tool-call", "tool-result"))

_part_adapter: TypeAdapter[Part] = TypeAdapter(Part)


class MessageMetadata(BaseModel):
    """UI bookkeeping attached to a message.

    The loading fields are only set while a tool call on the message is
    outstanding (and keep their final values afterwards). Unknown keys are
    preserved.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    timestamp: int | float | None = None
    session_id: str | None = None
    is_loading: bool | None = None
    estimated_duration: float | None = None
    start_time: int | float | None = None
    progress_percentage: float | None = None
    elapsed_time: float | None = None


class ConversationMessage(BaseModel):
    """One transcript entry."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | tuple[Part, ...]
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    @property
    def has_text_content(self) -> bool:
        return isinstance(self.content, str)

    @property
    def parts(self) -> tuple[Part, ...]:
        """Content as parts; plain text becomes a single text part."""
        if isinstance(self.content, str):
            return (TextPart(text=self.content),) if self.content else ()
        return self.content

    def tool_call_ids(self) -> list[str]:
        if isinstance(self.content, str):
            return []
        return [part.tool_call_id for part in self.content if isinstance(part, ToolCallPart)]

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            data["content"] = self.content
        else:
            data["content"] = [part.model_dump(mode="json", by_alias=True) for part in self.content]
        metadata = self.metadata.model_dump(mode="json", exclude_none=True)
        if metadata:
            data["metadata"] = metadata
        return data


History = tuple[ConversationMessage, ...]


def parse_part(raw: Any) -> Part | None:
    """Validate one content part. Unknown or invalid parts are logged and return None."""
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        logger.warning(f"Skipping non-object content part: {type(raw).__name__}")
        return None
    if raw.get("type") not in PART_TYPES:
        logger.warning(f"Skipping unknown part type: {raw.get('type')!r}")
        return None
    try:
        return _part_adapter.validate_python(dict(raw))
    except ValidationError as e:
        logger.warning(f"Skipping invalid {raw.get('type')} part: {e}")
        return None


def parse_message(raw: Mapping[str, Any] | ConversationMessage) -> ConversationMessage:
    """Validate one stored message.

    Raises:
        ProtocolError: If the role is unknown or content is neither a string
            nor a list of parts
    """
    if isinstance(raw, ConversationMessage):
        return raw
    if not isinstance(raw, Mapping):
        raise ProtocolError(f"Message must be an object, got {type(raw).__name__}")

    role = raw.get("role")
    if role not in ROLES:
        raise ProtocolError(f"Unknown message role: {role!r}")

    content = raw.get("content", "")
    if isinstance(content, list | tuple):
        content = tuple(part for part in map(parse_part, content) if part is not None)
    elif not isinstance(content, str):
        raise ProtocolError(f"Unsupported content for {role} message: {type(content).__name__}")

    try:
        metadata = MessageMetadata.model_validate(raw.get("metadata") or {})
    except ValidationError as e:
        raise ProtocolError(f"Invalid metadata on {role} message: {e}") from e
    return ConversationMessage(role=role, content=content, metadata=metadata)


def parse_history(raw: Iterable[Any] | None) -> History:
    """Validate a stored transcript into typed messages."""
    if raw is None:
        return ()
    return tuple(parse_message(message) for message in raw)


def dump_history(history: Iterable[ConversationMessage]) -> list[dict[str, Any]]:
    return [message.to_wire() for message in history]
