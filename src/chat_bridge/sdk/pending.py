"""Pending-request table for correlated calls.

Each issued request gets one entry holding the future its caller awaits.
Settlement (response, error, timeout, sweep, dispose) is first-wins: the
entry is removed and its timer cancelled on the first settlement, and any
later settlement for the same id finds nothing and is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..protocol.errors import RequestDisposedError, RequestTimeoutError
from ..protocol.operations import resolve_timeout

logger = logging.getLogger(__name__)

# Stale entries are force-settled once they exceed this multiple of their timeout.
STALE_FACTOR = 2


@dataclass
class PendingRequest:
    """A request waiting for its response."""

    request_id: str
    key: str
    future: asyncio.Future[Any]
    timeout: float
    created_at: float = field(default_factory=lambda: asyncio.get_running_loop().time())
    timer: asyncio.TimerHandle | None = None


class RequestRegistry:
    """Tracks outstanding requests and applies the per-key timeout policy."""

    def __init__(self, timeout_policy: Callable[[str], float] | None = None) -> None:
        self._timeout_policy = timeout_policy or resolve_timeout
        self._pending: dict[str, PendingRequest] = {}
        self._disposed = False

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def get(self, request_id: str) -> PendingRequest | None:
        return self._pending.get(request_id)

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def register(self, request_id: str, key: str, timeout: float | None = None) -> asyncio.Future[Any]:
        """Create the pending entry for a request about to be sent.

        Args:
            request_id: Correlation id of the request
            key: Operation key, used to look up the timeout policy
            timeout: Explicit timeout overriding the policy (0 = none)

        Returns:
            Future settled by the matching response or error

        Raises:
            RequestDisposedError: If the registry was already disposed
            ValueError: If the id is already pending
        """
        if self._disposed:
            raise RequestDisposedError(key, request_id)
        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")

        loop = asyncio.get_running_loop()
        if timeout is None:
            timeout = self._timeout_policy(key)

        entry = PendingRequest(
            request_id=request_id,
            key=key,
            future=loop.create_future(),
            timeout=timeout,
            created_at=loop.time(),
        )
        if timeout > 0:
            entry.timer = loop.call_later(timeout, self._expire, entry)

        # A caller that stops waiting (cancellation) releases the entry.
        entry.future.add_done_callback(lambda f: self._discard_cancelled(entry, f))

        self._pending[request_id] = entry
        logger.debug(f"Pending request {request_id} ({key}), timeout={timeout:g}s")
        return entry.future

    def resolve(self, request_id: str, value: Any) -> bool:
        """Settle a request successfully. Returns False if it was not pending."""
        entry = self._take(request_id)
        if entry is None:
            logger.debug(f"Ignoring response for settled or unknown request {request_id}")
            return False
        if not entry.future.done():
            entry.future.set_result(value)
        return True

    def reject(self, request_id: str, error: BaseException) -> bool:
        """Settle a request with an error. Returns False if it was not pending."""
        entry = self._take(request_id)
        if entry is None:
            logger.debug(f"Ignoring error for settled or unknown request {request_id}")
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def sweep(self, now: float | None = None) -> int:
        """Force-reject requests older than twice their timeout.

        Requests without a timeout are never swept.

        Args:
            now: Loop time to compare against (defaults to the running loop's)

        Returns:
            Number of requests rejected
        """
        if now is None:
            now = asyncio.get_running_loop().time()

        stale = [
            entry
            for entry in self._pending.values()
            if entry.timeout > 0 and now - entry.created_at > entry.timeout * STALE_FACTOR
        ]
        for entry in stale:
            logger.warning(
                f"Sweeping stale request {entry.request_id} ({entry.key}) "
                f"after {now - entry.created_at:.1f}s"
            )
            self.reject(entry.request_id, RequestTimeoutError(entry.key, entry.timeout, entry.request_id))
        return len(stale)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep periodically until cancelled."""
        while not self._disposed:
            await asyncio.sleep(interval)
            self.sweep()

    def dispose(self) -> int:
        """Reject every pending request; later registrations fail.

        Returns:
            Number of requests rejected
        """
        self._disposed = True
        entries = list(self._pending.values())
        for entry in entries:
            self.reject(entry.request_id, RequestDisposedError(entry.key, entry.request_id))
        if entries:
            logger.info(f"Disposed {len(entries)} pending request(s)")
        return len(entries)

    def _expire(self, entry: PendingRequest) -> None:
        if self._pending.get(entry.request_id) is not entry:
            return
        logger.warning(f"Request {entry.request_id} ({entry.key}) timed out after {entry.timeout:g}s")
        self.reject(entry.request_id, RequestTimeoutError(entry.key, entry.timeout, entry.request_id))

    def _take(self, request_id: str) -> PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        return entry

    def _discard_cancelled(self, entry: PendingRequest, future: asyncio.Future[Any]) -> None:
        if future.cancelled() and self._pending.get(entry.request_id) is entry:
            self._take(entry.request_id)
