"""Chat controller - host-side handlers for chat, history and provider operations.

Runs at most one model query per session. Starting a new query cancels
the previous one ("superseded"); ``stopChat`` cancels it on behalf of the
user. Each raw delta from the query is folded into the transcript,
persisted, and broadcast to views while the query is still live.

Terminal signals:
    completed   -> chatStreamEnd
    user stop   -> chatStopped (no chatStreamEnd)
    superseded  -> logged only
    failure     -> chatError
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..protocol.errors import ProtocolError, QueryCancelledError
from ..protocol.operations import Operation, ViewEvent
from .history_store import HistoryStore
from .messages import ConversationMessage, History, MessageMetadata, dump_history, parse_history
from .query import SUPERSEDED, USER_CANCELLED, CancellationToken, ModelQuery
from .reducer import AssistantError, AssistantText, Delta, StreamReducer, ToolCall, ToolResult, to_deltas

logger = logging.getLogger(__name__)

Broadcast = Callable[..., Any]


@dataclass
class ProviderSettings:
    """Currently selected model provider, owned by the host."""

    provider_id: str
    model: str
    available: dict[str, list[str]] | None = None  # provider -> models; None accepts any

    def to_dict(self) -> dict[str, str]:
        return {"providerId": self.provider_id, "model": self.model}

    def change(self, provider_id: str, model: str) -> None:
        if not provider_id or not model:
            raise ValueError("providerId and model are required")
        if self.available is not None:
            if provider_id not in self.available:
                raise ValueError(f"Unknown provider: {provider_id}")
            models = self.available[provider_id]
            if models and model not in models:
                raise ValueError(f"Model '{model}' is not available for provider '{provider_id}'")
        self.provider_id = provider_id
        self.model = model


class ChatController:
    """Implements the chat capabilities of the host.

    Args:
        store: Persistence collaborator for transcripts
        query: Model query collaborator
        broadcast: Sends an event to all views, ``broadcast(key, *params)``
        session_id: Conversation this controller works on
        provider: Provider selection (defaults to an unrestricted echo provider)
        reducer: Stream reducer (defaults to one tagging messages with the session)
    """

    def __init__(
        self,
        store: HistoryStore,
        query: ModelQuery,
        broadcast: Broadcast,
        *,
        session_id: str = "default",
        provider: ProviderSettings | None = None,
        reducer: StreamReducer | None = None,
    ) -> None:
        self._store = store
        self._query = query
        self._broadcast = broadcast
        self.session_id = session_id
        self.provider = provider or ProviderSettings(provider_id="echo", model="echo-1")
        self._reducer = reducer or StreamReducer(session_id=session_id)
        self._token: CancellationToken | None = None

    @property
    def is_streaming(self) -> bool:
        return self._token is not None

    def capabilities(self) -> dict[str, Callable[..., Any]]:
        """Operation key -> handler map for the dispatcher."""
        return {
            Operation.SEND_CHAT_MESSAGE.value: self.send_chat_message,
            Operation.STOP_CHAT.value: self.stop_chat,
            Operation.SAVE_CHAT_HISTORY.value: self.save_chat_history,
            Operation.LOAD_CHAT_HISTORY.value: self.load_chat_history,
            Operation.CLEAR_CHAT_HISTORY.value: self.clear_chat_history,
            Operation.GET_CURRENT_PROVIDER.value: self.get_current_provider,
            Operation.CHANGE_PROVIDER.value: self.change_provider,
        }

    # =========================================================================
    # Chat
    # =========================================================================

    async def send_chat_message(self, prompt: str, history: list[Any] | None = None) -> dict[str, Any]:
        """Run one model turn for a user prompt.

        Args:
            prompt: User message text
            history: Transcript the view holds; defaults to the stored one

        Returns:
            ``{"status": "completed" | "stopped" | "superseded" | "error"}``

        Raises:
            ProtocolError: The model stream violated the message contract
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("Message cannot be empty")

        base = parse_history(history) if history is not None else self._store.get(self.session_id)
        transcript: History = base + (
            ConversationMessage(
                role="user",
                content=prompt,
                metadata=MessageMetadata(timestamp=self._reducer.now_ms(), session_id=self.session_id),
            ),
        )

        if self._token is not None:
            logger.info(f"New message supersedes running query in session {self.session_id}")
            self._token.cancel(SUPERSEDED)

        token = CancellationToken()
        self._token = token

        def on_delta(raw: Any) -> History:
            nonlocal transcript
            if token is not self._token:
                logger.debug("Dropping delta from superseded query")
                return transcript
            for delta in to_deltas(raw):
                transcript = self._reducer.reduce(transcript, delta)
                if not token.cancelled:
                    self._emit_delta(delta)
            self._store.set(self.session_id, transcript)
            return transcript

        try:
            self._store.set(self.session_id, transcript)
            self._broadcast(ViewEvent.CHAT_STREAM_START.value)
            final = await self._query(transcript, token, on_delta)
        except QueryCancelledError:
            return self._finish_cancelled(token, transcript)
        except ProtocolError as e:
            logger.error(f"Model stream violated the message contract: {e}")
            self._broadcast(ViewEvent.CHAT_ERROR.value, str(e))
            raise
        except Exception as e:
            if token.cancelled:
                return self._finish_cancelled(token, transcript)
            logger.exception(f"Chat query failed in session {self.session_id}")
            self._broadcast(ViewEvent.CHAT_ERROR.value, str(e) or type(e).__name__)
            return {"status": "error", "error": str(e) or type(e).__name__}
        finally:
            if self._token is token:
                self._token = None

        if token.cancelled:
            return self._finish_cancelled(token, transcript)

        if final is not None:
            transcript = parse_history(final)
        self._store.set(self.session_id, transcript)
        self._broadcast(ViewEvent.CHAT_STREAM_END.value)
        return {"status": "completed"}

    def _finish_cancelled(self, token: CancellationToken, transcript: History) -> dict[str, Any]:
        # A newer turn owns the transcript now, even if this one was stopped first
        if token.reason == SUPERSEDED or (self._token is not None and self._token is not token):
            logger.info(f"Query superseded in session {self.session_id}")
            return {"status": "superseded"}

        logger.info(f"Query stopped in session {self.session_id} ({token.reason})")
        self._store.set(self.session_id, transcript)
        self._broadcast(ViewEvent.CHAT_STOPPED.value)
        return {"status": "stopped"}

    def _emit_delta(self, delta: Delta) -> None:
        match delta:
            case AssistantText(text=text):
                if text.strip():
                    self._broadcast(ViewEvent.CHAT_RESPONSE_CHUNK.value, text, "assistant", {})
            case ToolCall(is_update=True):
                self._broadcast(ViewEvent.CHAT_TOOL_UPDATE.value, delta.tool_call_id, delta.input)
            case ToolCall():
                self._broadcast(
                    ViewEvent.CHAT_RESPONSE_CHUNK.value,
                    "",
                    "tool-call",
                    {"tool_id": delta.tool_call_id, "tool_name": delta.tool_name, "tool_input": delta.input},
                )
            case ToolResult():
                self._broadcast(
                    ViewEvent.CHAT_RESPONSE_CHUNK.value,
                    "",
                    "tool-result",
                    {"tool_id": delta.tool_call_id, "tool_name": delta.tool_name, "output": delta.output},
                )
                self._broadcast(ViewEvent.CHAT_TOOL_RESULT.value, delta.tool_call_id, delta.output)
            case AssistantError(text=text):
                self._broadcast(ViewEvent.CHAT_RESPONSE_CHUNK.value, text, "error", {})

    def stop_chat(self) -> dict[str, bool]:
        """Cancel the running query on behalf of the user."""
        if self._token is None:
            logger.info(f"Stop requested but no query is running in session {self.session_id}")
            return {"stopped": False}
        self._token.cancel(USER_CANCELLED)
        return {"stopped": True}

    def cancel_all(self, reason: str) -> None:
        """Cancel any running query (host shutdown)."""
        if self._token is not None:
            self._token.cancel(reason)

    # =========================================================================
    # History
    # =========================================================================

    def save_chat_history(self, history: Sequence[Any]) -> None:
        self._store.set(self.session_id, parse_history(history))

    def load_chat_history(self) -> list[dict[str, Any]]:
        return dump_history(self._store.get(self.session_id))

    def clear_chat_history(self) -> None:
        self._store.set(self.session_id, ())
        logger.info(f"Cleared history for session {self.session_id}")

    # =========================================================================
    # Provider
    # =========================================================================

    def get_current_provider(self) -> dict[str, str]:
        return self.provider.to_dict()

    def change_provider(self, provider_id: str, model: str) -> dict[str, Any]:
        self.provider.change(provider_id, model)
        logger.info(f"Provider changed to {provider_id} ({model})")
        return {"success": True, "provider": provider_id, "model": model}
