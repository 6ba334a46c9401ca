"""Operation and event vocabulary.

Operations are keys a view invokes on the host (request/response).
View events are keys the host broadcasts to every connected view.
"""

from __future__ import annotations

from enum import Enum


class Operation(str, Enum):
    """Operation keys a view may call on the host."""

    # Chat
    SEND_CHAT_MESSAGE = "sendChatMessage"
    STOP_CHAT = "stopChat"

    # History
    SAVE_CHAT_HISTORY = "saveChatHistory"
    LOAD_CHAT_HISTORY = "loadChatHistory"
    CLEAR_CHAT_HISTORY = "clearChatHistory"

    # Provider
    GET_CURRENT_PROVIDER = "getCurrentProvider"
    CHANGE_PROVIDER = "changeProvider"

    # Editor chrome (handlers supplied by the embedding host)
    SELECT_FILE = "selectFile"
    SELECT_FOLDER = "selectFolder"
    SELECT_IMAGES = "selectImages"
    SHOW_INFORMATION_MESSAGE = "showInformationMessage"
    SHOW_ERROR_MESSAGE = "showErrorMessage"
    EXECUTE_COMMAND = "executeCommand"
    CHECK_CANVAS_STATUS = "checkCanvasStatus"
    OPEN_CANVAS = "openCanvas"
    INITIALIZE_PROJECT = "initializeProject"
    GET_BASE64_IMAGE = "getBase64Image"
    SAVE_IMAGE_TO_MOODBOARD = "saveImageToMoodboard"


class ViewEvent(str, Enum):
    """Event keys the host broadcasts to views."""

    # Streaming
    CHAT_STREAM_START = "chatStreamStart"
    CHAT_RESPONSE_CHUNK = "chatResponseChunk"
    CHAT_TOOL_UPDATE = "chatToolUpdate"
    CHAT_TOOL_RESULT = "chatToolResult"
    CHAT_STREAM_END = "chatStreamEnd"
    CHAT_ERROR = "chatError"
    CHAT_STOPPED = "chatStopped"

    # State notifications
    WORKSPACE_CHANGED = "workspaceChanged"
    PROVIDER_CHANGED = "providerChanged"
    HISTORY_LOADED = "historyLoaded"
    MIGRATION_COMPLETE = "migrationComplete"

    # Canvas / assets
    CONTEXT_FROM_CANVAS = "contextFromCanvas"
    IMAGE_SAVED_TO_MOODBOARD = "imageSavedToMoodboard"
    IMAGE_SAVE_ERROR = "imageSaveError"
    UPLOAD_FAILED = "uploadFailed"
    BASE64_IMAGE_RESULT = "base64ImageResult"


DEFAULT_TIMEOUT = 30.0

# Seconds; 0 disables the timer. Streaming and pure-mutation operations
# complete through events, pickers wait on the user.
DEFAULT_TIMEOUTS: dict[str, float] = {
    Operation.SEND_CHAT_MESSAGE.value: 0,
    Operation.LOAD_CHAT_HISTORY.value: 0,
    Operation.SAVE_CHAT_HISTORY.value: 0,
    Operation.CLEAR_CHAT_HISTORY.value: 0,
    Operation.SELECT_FILE.value: 60.0,
    Operation.SELECT_FOLDER.value: 60.0,
    Operation.SELECT_IMAGES.value: 60.0,
    Operation.CHANGE_PROVIDER.value: 15.0,
}


def resolve_timeout(
    key: str,
    overrides: dict[str, float] | None = None,
    default: float = DEFAULT_TIMEOUT,
) -> float:
    """Resolve the timeout policy for an operation key.

    Overrides win over the built-in table; unknown keys use ``default``.
    """
    if overrides and key in overrides:
        return overrides[key]
    return DEFAULT_TIMEOUTS.get(key, default)
