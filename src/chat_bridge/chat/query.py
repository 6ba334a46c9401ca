"""Model-query collaborator contract and cooperative cancellation.

The model itself is a black box::

    updated = await query(history, token, on_delta)

``on_delta`` is called zero or more times with raw provider messages and
returns the transcript folded so far. Queries should check ``token``
after each awaited step and stop once it is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from ..protocol.errors import QueryCancelledError
from .messages import ConversationMessage, History

logger = logging.getLogger(__name__)

OnDelta = Callable[[Any], History]

# Cancellation reasons
USER_CANCELLED = "user"
SUPERSEDED = "superseded"
SHUTDOWN = "shutdown"


class CancellationToken:
    """Cooperative cancellation signal for one query."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = USER_CANCELLED) -> bool:
        """Signal cancellation. Only the first call records its reason.

        Returns:
            True if this call cancelled the token
        """
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise QueryCancelledError(self._reason or USER_CANCELLED)

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason or USER_CANCELLED


class ModelQuery(Protocol):
    """Callable that runs one model turn over a transcript."""

    async def __call__(
        self,
        history: History,
        token: CancellationToken,
        on_delta: OnDelta,
    ) -> Sequence[ConversationMessage] | None: ...


class EchoModelQuery:
    """Development stand-in that echoes the last user prompt.

    Announces an ``echo`` tool call, reports its result, then streams the
    prompt back word by word. Useful for exercising views without a model.
    """

    def __init__(self, delay: float = 0.05, use_tool: bool = True) -> None:
        self.delay = delay
        self.use_tool = use_tool

    async def __call__(
        self,
        history: History,
        token: CancellationToken,
        on_delta: OnDelta,
    ) -> Sequence[ConversationMessage] | None:
        prompt = _last_user_text(history)

        if self.use_tool:
            call_id = f"echo-{uuid.uuid4().hex[:8]}"
            on_delta(
                {
                    "role": "assistant",
                    "content": [
                        {"type": "tool-call", "toolCallId": call_id, "toolName": "echo", "input": {"text": prompt}}
                    ],
                }
            )
            await self._step(token)
            on_delta(
                {
                    "role": "tool",
                    "content": [
                        {"type": "tool-result", "toolCallId": call_id, "toolName": "echo", "output": prompt}
                    ],
                }
            )

        words = prompt.split(" ") if prompt else ["(empty prompt)"]
        for index, word in enumerate(words):
            await self._step(token)
            on_delta({"role": "assistant", "content": word if index == 0 else f" {word}"})

        return None

    async def _step(self, token: CancellationToken) -> None:
        await asyncio.sleep(self.delay)
        token.raise_if_cancelled()


def _last_user_text(history: History) -> str:
    for message in reversed(history):
        if message.role == "user":
            if isinstance(message.content, str):
                return message.content
            return " ".join(getattr(part, "text", "") for part in message.content).strip()
    return ""
