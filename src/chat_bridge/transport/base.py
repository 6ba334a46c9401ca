"""View transport contract.

A view transport is one end of a channel between the host and a single
view. The host only ever needs two things from it: push a wire message,
and learn when the channel goes away.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DisposeCallback = Callable[[], None]


@runtime_checkable
class ViewTransport(Protocol):
    """Protocol for view channels.

    ``send`` may complete synchronously (return None) or hand back an
    awaitable; a failure is reported either by raising immediately or by
    the awaitable raising. Callers must handle both.
    """

    def send(self, message: dict[str, Any]) -> Awaitable[None] | None:
        """Push one wire message to the other end."""
        ...

    def on_dispose(self, callback: DisposeCallback) -> Callable[[], None]:
        """Register a callback fired once when the channel closes.

        Returns:
            Function that removes the callback
        """
        ...

    async def close(self) -> None:
        """Close the channel and fire dispose callbacks."""
        ...


class DisposeNotifier:
    """Fire-once dispose callbacks shared by transport implementations."""

    def __init__(self) -> None:
        self._callbacks: list[DisposeCallback] = []
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def add(self, callback: DisposeCallback) -> Callable[[], None]:
        if self._fired:
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def fire(self) -> None:
        if self._fired:
            return
        self._fired = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in transport dispose callback")
