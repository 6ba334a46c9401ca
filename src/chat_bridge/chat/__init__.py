"""Chat layer - transcript model, streaming reducer, persistence and controller."""

from .controller import ChatController, ProviderSettings
from .history_store import FileHistoryStore, HistoryStore, InMemoryHistoryStore
from .messages import (
    ConversationMessage,
    History,
    MessageMetadata,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    dump_history,
    parse_history,
)
from .query import CancellationToken, EchoModelQuery, ModelQuery
from .reducer import (
    AssistantError,
    AssistantText,
    Delta,
    StreamReducer,
    ToolCall,
    ToolResult,
    deltas_from_raw,
    fold,
    reduce,
)
from .tool_output import is_tool_output, normalize_tool_output

__all__ = [
    # Transcript
    "ConversationMessage",
    "MessageMetadata",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "History",
    "parse_history",
    "dump_history",
    # Reducer
    "StreamReducer",
    "Delta",
    "AssistantText",
    "AssistantError",
    "ToolCall",
    "ToolResult",
    "deltas_from_raw",
    "reduce",
    "fold",
    "normalize_tool_output",
    "is_tool_output",
    # Query
    "ModelQuery",
    "CancellationToken",
    "EchoModelQuery",
    # Persistence
    "HistoryStore",
    "InMemoryHistoryStore",
    "FileHistoryStore",
    # Controller
    "ChatController",
    "ProviderSettings",
]
