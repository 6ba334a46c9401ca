"""Conversation history persistence.

The chat controller only needs ``get``/``set``/``subscribe`` per session.
Two implementations:

- InMemoryHistoryStore: process-local, for embedding and tests
- FileHistoryStore: one directory per session holding transcript.jsonl
  and metadata.json

Storage location (file store): <storage_dir>/<session-id>/
"""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from .messages import ConversationMessage, History, dump_history, parse_history

logger = logging.getLogger(__name__)

HistoryListener = Callable[[History], None]


class HistoryStore(Protocol):
    """Persistence collaborator for conversation transcripts."""

    def get(self, session_id: str) -> History: ...

    def set(self, session_id: str, messages: Sequence[ConversationMessage]) -> None: ...

    def subscribe(self, session_id: str, listener: HistoryListener) -> Callable[[], None]: ...


def validate_session_id(session_id: str) -> str:
    """Reject ids that are empty or could escape the storage directory."""
    if not session_id or not session_id.strip():
        raise ValueError("session_id cannot be empty")
    if "/" in session_id or "\\" in session_id or session_id in (".", ".."):
        raise ValueError(f"Invalid session_id: {session_id}")
    return session_id


class _Listeners:
    """Per-session listener lists shared by store implementations."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[HistoryListener]] = {}

    def add(self, session_id: str, listener: HistoryListener) -> Callable[[], None]:
        self._listeners.setdefault(session_id, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(session_id, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def notify(self, session_id: str, messages: History) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners.get(session_id, [])):
            try:
                listener(messages)
            except Exception:
                logger.exception(f"Error in history listener for session {session_id}")


class InMemoryHistoryStore:
    """History store kept in process memory."""

    def __init__(self) -> None:
        self._histories: dict[str, History] = {}
        self._listeners = _Listeners()

    def get(self, session_id: str) -> History:
        return self._histories.get(session_id, ())

    def set(self, session_id: str, messages: Sequence[ConversationMessage]) -> None:
        current = self._histories.get(session_id)
        if messages is current:
            return
        history = tuple(messages)
        self._histories[session_id] = history
        self._listeners.notify(session_id, history)

    def subscribe(self, session_id: str, listener: HistoryListener) -> Callable[[], None]:
        return self._listeners.add(session_id, listener)

    def list_sessions(self) -> list[str]:
        return sorted(self._histories)


class FileHistoryStore:
    """History store writing one JSONL transcript per session.

    Contract:
    - Inputs: session_id (str), messages (sequence of ConversationMessage)
    - Side Effects: Writes <storage_dir>/<session_id>/transcript.jsonl and metadata.json
    - Errors: ValueError for invalid session ids, OSError for disk issues
    """

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._cache: dict[str, History] = {}
        self._listeners = _Listeners()

    def _session_dir(self, session_id: str) -> Path:
        return self.storage_dir / validate_session_id(session_id)

    def _transcript_path(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "transcript.jsonl"

    def _metadata_path(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "metadata.json"

    # =========================================================================
    # HistoryStore
    # =========================================================================

    def get(self, session_id: str) -> History:
        if session_id in self._cache:
            return self._cache[session_id]
        history = self._load_transcript(session_id)
        self._cache[session_id] = history
        return history

    def set(self, session_id: str, messages: Sequence[ConversationMessage]) -> None:
        if messages is self._cache.get(session_id):
            return
        history = tuple(messages)
        self._save_transcript(session_id, history)
        self._cache[session_id] = history
        self._listeners.notify(session_id, history)

    def subscribe(self, session_id: str, listener: HistoryListener) -> Callable[[], None]:
        return self._listeners.add(session_id, listener)

    # =========================================================================
    # Session management
    # =========================================================================

    def list_sessions(self) -> list[str]:
        """List session ids that have a stored transcript."""
        if not self.storage_dir.exists():
            return []
        return sorted(
            path.name
            for path in self.storage_dir.iterdir()
            if path.is_dir() and (path / "transcript.jsonl").exists()
        )

    def load_metadata(self, session_id: str) -> dict[str, Any] | None:
        metadata_path = self._metadata_path(session_id)
        if not metadata_path.exists():
            return None
        try:
            return json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load metadata for {session_id}: {e}")
            return None

    def delete(self, session_id: str) -> bool:
        """Remove a session's files. Returns False if nothing was stored."""
        session_dir = self._session_dir(session_id)
        self._cache.pop(session_id, None)
        if not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        self._listeners.notify(session_id, ())
        logger.debug(f"Session {session_id} deleted")
        return True

    # =========================================================================
    # Files
    # =========================================================================

    def _save_transcript(self, session_id: str, history: History) -> None:
        session_dir = self._session_dir(session_id)
        session_dir.mkdir(parents=True, exist_ok=True)

        lines = [json.dumps(message, ensure_ascii=False) for message in dump_history(history)]
        content = "\n".join(lines) + "\n" if lines else ""

        # Write to a temp file first so readers never see a partial transcript
        transcript_path = self._transcript_path(session_id)
        temp_path = transcript_path.with_suffix(".jsonl.tmp")
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(transcript_path)

        metadata = {
            "session_id": session_id,
            "message_count": len(history),
            "updated": datetime.now(UTC).isoformat(),
        }
        self._metadata_path(session_id).write_text(
            json.dumps(metadata, indent=2, ensure_ascii=False), encoding="utf-8"
        )

    def _load_transcript(self, session_id: str) -> History:
        transcript_path = self._transcript_path(session_id)
        if not transcript_path.exists():
            return ()

        raw: list[dict[str, Any]] = []
        with open(transcript_path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    raw.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping corrupt line {line_number} in {transcript_path}: {e}")

        return parse_history(raw)
