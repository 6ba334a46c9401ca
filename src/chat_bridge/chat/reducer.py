"""Streaming reducer - folds model output deltas into a transcript.

``StreamReducer.reduce(history, delta)`` is pure: it never mutates the
incoming history and always returns a new tuple (or the same one when the
delta is a no-op). Callers serialize delta delivery per conversation.

Delta kinds:
    AssistantText   - a chunk of assistant prose
    ToolCall        - a tool invocation announced (or its input revised)
    ToolResult      - the normalized output of a tool invocation
    AssistantError  - a model-side failure shown in the transcript

Raw provider messages (``{"role", "content", "metadata"}``) are turned into
deltas by ``deltas_from_raw`` before folding.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..protocol.errors import ProtocolError
from .messages import (
    ConversationMessage,
    History,
    MessageMetadata,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from .tool_output import is_tool_output, normalize_tool_output

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_DURATION = 90.0
ERROR_PREFIX = "❌ **Error**: "


# =============================================================================
# Deltas
# =============================================================================


@dataclass(frozen=True)
class AssistantText:
    text: str


@dataclass(frozen=True)
class ToolCall:
    tool_call_id: str
    tool_name: str = "unknown"
    input: Any = field(default_factory=dict)
    is_update: bool = False


@dataclass(frozen=True)
class ToolResult:
    """Tool output; ``output`` is expected in normalized form."""

    tool_call_id: str
    tool_name: str = "unknown"
    output: dict[str, Any] = field(default_factory=lambda: {"type": "text", "value": ""})
    elapsed_time: float | None = None


@dataclass(frozen=True)
class AssistantError:
    text: str


Delta = AssistantText | ToolCall | ToolResult | AssistantError
DELTA_TYPES = (AssistantText, ToolCall, ToolResult, AssistantError)


# =============================================================================
# Reducer
# =============================================================================


class StreamReducer:
    """Pure fold of deltas into conversation messages.

    Args:
        estimated_duration: Seconds recorded as the expected duration of a tool call
        clock: Returns the current time in seconds (injectable for tests)
        session_id: Recorded on messages this reducer creates
    """

    def __init__(
        self,
        estimated_duration: float = DEFAULT_ESTIMATED_DURATION,
        clock: Callable[[], float] = time.time,
        session_id: str | None = None,
    ) -> None:
        self.estimated_duration = estimated_duration
        self.clock = clock
        self.session_id = session_id

    def reduce(self, history: Sequence[ConversationMessage], delta: Delta) -> History:
        """Apply one delta. Returns a new transcript; the input is untouched."""
        history = tuple(history)

        match delta:
            case AssistantError(text=text):
                return history + (self._new_message(f"{ERROR_PREFIX}{text}"),)
            case AssistantText(text=text):
                return self._append_text(history, text)
            case ToolCall(is_update=True):
                return self._update_tool_call(history, delta)
            case ToolCall():
                return self._announce_tool_call(history, delta)
            case ToolResult():
                return self._record_tool_result(history, delta)
            case _:
                raise ProtocolError(f"Unknown delta: {type(delta).__name__}")

    def fold(self, history: Sequence[ConversationMessage], deltas: Iterable[Delta]) -> History:
        """Apply deltas in order."""
        result = tuple(history)
        for delta in deltas:
            result = self.reduce(result, delta)
        return result

    def apply_raw(self, history: Sequence[ConversationMessage], raw: Any) -> History:
        """Fold one raw provider message (or a ready-made delta)."""
        return self.fold(history, to_deltas(raw))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _append_text(self, history: History, text: str) -> History:
        if not text.strip():
            logger.debug("Dropping empty assistant text delta")
            return history

        tail = history[-1] if history else None
        if tail is not None and tail.role == "assistant" and isinstance(tail.content, str):
            return history[:-1] + (tail.model_copy(update={"content": tail.content + text}),)
        return history + (self._new_message(text),)

    def _announce_tool_call(self, history: History, delta: ToolCall) -> History:
        part = ToolCallPart(
            tool_call_id=delta.tool_call_id,
            tool_name=delta.tool_name,
            input=delta.input,
        )
        loading = {
            "is_loading": True,
            "estimated_duration": self.estimated_duration,
            "start_time": self.now_ms(),
            "progress_percentage": 0,
            "elapsed_time": None,
        }

        tail = history[-1] if history else None
        if tail is not None and tail.role == "assistant":
            updated = tail.model_copy(
                update={
                    "content": tail.parts + (part,),
                    "metadata": tail.metadata.model_copy(update=loading),
                }
            )
            return history[:-1] + (updated,)

        message = self._new_message((part,))
        message = message.model_copy(update={"metadata": message.metadata.model_copy(update=loading)})
        return history + (message,)

    def _update_tool_call(self, history: History, delta: ToolCall) -> History:
        for index in range(len(history) - 1, -1, -1):
            message = history[index]
            if message.role != "assistant" or isinstance(message.content, str):
                continue
            for position, part in enumerate(message.content):
                if isinstance(part, ToolCallPart) and part.tool_call_id == delta.tool_call_id:
                    content = (
                        message.content[:position]
                        + (part.model_copy(update={"input": delta.input}),)
                        + message.content[position + 1 :]
                    )
                    updated = message.model_copy(update={"content": content})
                    return history[:index] + (updated,) + history[index + 1 :]

        logger.debug(f"Tool call update for unknown id {delta.tool_call_id}; ignoring")
        return history

    def _record_tool_result(self, history: History, delta: ToolResult) -> History:
        output = delta.output
        if not is_tool_output(output):
            logger.warning(f"Tool result {delta.tool_call_id} output was not normalized")
            output = normalize_tool_output(output)

        part = ToolResultPart(
            tool_call_id=delta.tool_call_id,
            tool_name=delta.tool_name,
            output=output,
        )
        result = history + (self._new_message((part,), role="tool"),)

        for index in range(len(history) - 1, -1, -1):
            message = history[index]
            if (
                message.role == "assistant"
                and message.metadata.is_loading
                and delta.tool_call_id in message.tool_call_ids()
            ):
                elapsed = delta.elapsed_time
                if elapsed is None:
                    elapsed = message.metadata.estimated_duration
                if elapsed is None:
                    elapsed = self.estimated_duration
                metadata = message.metadata.model_copy(
                    update={"is_loading": False, "progress_percentage": 100, "elapsed_time": elapsed}
                )
                return result[:index] + (message.model_copy(update={"metadata": metadata}),) + result[index + 1 :]

        logger.debug(f"Tool result {delta.tool_call_id} matched no loading tool call")
        return result

    def _new_message(self, content: str | tuple[Any, ...], role: str = "assistant") -> ConversationMessage:
        return ConversationMessage(
            role=role,
            content=content,
            metadata=MessageMetadata(timestamp=self.now_ms(), session_id=self.session_id),
        )

    def now_ms(self) -> int:
        return int(self.clock() * 1000)


_default_reducer = StreamReducer()


def reduce(history: Sequence[ConversationMessage], delta: Delta) -> History:
    """Apply one delta with default settings."""
    return _default_reducer.reduce(history, delta)


def fold(history: Sequence[ConversationMessage], deltas: Iterable[Delta]) -> History:
    return _default_reducer.fold(history, deltas)


# =============================================================================
# Raw provider messages
# =============================================================================


def to_deltas(raw: Any) -> list[Delta]:
    """Accept a delta, a ConversationMessage, or a raw message mapping."""
    if isinstance(raw, DELTA_TYPES):
        return [raw]
    if isinstance(raw, ConversationMessage):
        raw = raw.to_wire()
    if not isinstance(raw, Mapping):
        raise ProtocolError(f"Stream message must be an object, got {type(raw).__name__}")
    return deltas_from_raw(raw)


def deltas_from_raw(message: Mapping[str, Any]) -> list[Delta]:
    """Convert one raw provider message into deltas.

    Tool-call input is read from ``input``, falling back to the legacy
    ``args`` and ``params`` fields. An update is flagged by
    ``metadata.is_update`` or ``_isUpdate`` on the part.

    Raises:
        ProtocolError: Unknown role, or content of an unsupported shape
    """
    role = message.get("role")
    content = message.get("content")
    metadata = message.get("metadata") or {}

    match role:
        case "assistant":
            if isinstance(content, str):
                if metadata.get("is_error") is True:
                    return [AssistantError(content)]
                return [AssistantText(content)]
            if isinstance(content, list):
                return _assistant_parts(content, metadata.get("is_update") is True)
            raise ProtocolError(f"Unsupported assistant content: {type(content).__name__}")

        case "tool":
            if isinstance(content, list):
                return _tool_parts(content)
            raise ProtocolError(f"Unsupported tool content: {type(content).__name__}")

        case "user" | "system":
            logger.debug(f"Ignoring {role} message in model stream")
            return []

        case _:
            raise ProtocolError(f"Unknown message role: {role!r}")


def _assistant_parts(parts: list[Any], is_update: bool) -> list[Delta]:
    deltas: list[Delta] = []
    for part in parts:
        part_type = part.get("type") if isinstance(part, Mapping) else None
        if part_type == "text":
            if part.get("text"):
                deltas.append(AssistantText(part["text"]))
        elif part_type == "tool-call":
            deltas.append(
                ToolCall(
                    tool_call_id=part.get("toolCallId") or _generated_id("tool"),
                    tool_name=part.get("toolName") or "unknown",
                    input=_tool_input(part),
                    is_update=is_update or part.get("_isUpdate") is True,
                )
            )
        else:
            logger.warning(f"Skipping unknown assistant part type: {part_type!r}")
    return deltas


def _tool_parts(parts: list[Any]) -> list[Delta]:
    deltas: list[Delta] = []
    for part in parts:
        part_type = part.get("type") if isinstance(part, Mapping) else None
        if part_type != "tool-result":
            logger.warning(f"Skipping unknown tool part type: {part_type!r}")
            continue
        if "output" not in part:
            logger.warning(f"Tool result part missing output: {json.dumps(part, default=str)}")
            continue
        deltas.append(
            ToolResult(
                tool_call_id=part.get("toolCallId") or _generated_id("result"),
                tool_name=part.get("toolName") or "unknown",
                output=normalize_tool_output(part["output"]),
            )
        )
    return deltas


def _tool_input(part: Mapping[str, Any]) -> Any:
    for key in ("input", "args", "params"):
        if part.get(key) is not None:
            return part[key]
    return {}


def _generated_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
