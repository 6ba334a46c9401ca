"""Unit tests for the pending-request registry.

Covers first-wins settlement, per-key timeout policy, the stale sweep,
and disposal.
"""

from __future__ import annotations

import asyncio

import pytest

from chat_bridge.protocol import RequestDisposedError, RequestTimeoutError, resolve_timeout
from chat_bridge.sdk import RequestRegistry


class TestTimeoutPolicy:
    """Tests for the per-key timeout table."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("sendChatMessage", 0),
            ("loadChatHistory", 0),
            ("saveChatHistory", 0),
            ("clearChatHistory", 0),
            ("selectFile", 60.0),
            ("selectFolder", 60.0),
            ("selectImages", 60.0),
            ("changeProvider", 15.0),
            ("getCurrentProvider", 30.0),
            ("somethingNew", 30.0),
        ],
    )
    def test_default_policy(self, key: str, expected: float) -> None:
        """Known keys use the table; unknown keys fall back to 30 seconds."""
        assert resolve_timeout(key) == expected

    def test_overrides_win(self) -> None:
        """Explicit overrides replace the table entry."""
        assert resolve_timeout("changeProvider", {"changeProvider": 2.0}) == 2.0


class TestSettlement:
    """Tests for resolve/reject semantics."""

    @pytest.mark.asyncio
    async def test_resolve_settles_and_removes(self) -> None:
        """A response resolves the future and removes the entry."""
        registry = RequestRegistry()
        future = registry.register("r1", "getCurrentProvider")

        assert registry.resolve("r1", {"providerId": "echo"}) is True
        assert await future == {"providerId": "echo"}
        assert "r1" not in registry
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_reject_settles_with_error(self) -> None:
        """An error rejects the future with the given exception."""
        registry = RequestRegistry()
        future = registry.register("r1", "getCurrentProvider")

        registry.reject("r1", ValueError("nope"))

        with pytest.raises(ValueError, match="nope"):
            await future

    @pytest.mark.asyncio
    async def test_first_settlement_wins(self) -> None:
        """Later settlements for the same id are no-ops."""
        registry = RequestRegistry()
        future = registry.register("r1", "getCurrentProvider")

        assert registry.resolve("r1", "first") is True
        assert registry.resolve("r1", "second") is False
        assert registry.reject("r1", RuntimeError("late")) is False
        assert await future == "first"

    @pytest.mark.asyncio
    async def test_unknown_id_is_ignored(self) -> None:
        """Settling an id that was never registered does nothing."""
        registry = RequestRegistry()

        assert registry.resolve("missing", 1) is False

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self) -> None:
        """At most one entry per id."""
        registry = RequestRegistry()
        registry.register("r1", "stopChat")

        with pytest.raises(ValueError):
            registry.register("r1", "stopChat")

    @pytest.mark.asyncio
    async def test_concurrent_requests_settle_once_each(self) -> None:
        """Many concurrent ids each receive exactly one settlement."""
        registry = RequestRegistry()
        futures = {f"r{i}": registry.register(f"r{i}", "getCurrentProvider") for i in range(50)}

        for i in range(50):
            if i % 2:
                registry.resolve(f"r{i}", i)
            else:
                registry.reject(f"r{i}", RuntimeError(str(i)))
            # Competing settlement for the same id is ignored
            registry.resolve(f"r{i}", "duplicate")

        results = await asyncio.gather(*futures.values(), return_exceptions=True)
        for i, result in enumerate(results):
            if i % 2:
                assert result == i
            else:
                assert isinstance(result, RuntimeError)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_releases_entry(self) -> None:
        """Cancelling the caller's future drops the pending entry."""
        registry = RequestRegistry()
        future = registry.register("r1", "getCurrentProvider")

        future.cancel()
        await asyncio.sleep(0)

        assert "r1" not in registry


class TestTimeouts:
    """Tests for timer-driven rejection."""

    @pytest.mark.asyncio
    async def test_zero_timeout_never_expires(self) -> None:
        """Policy 0 schedules no timer."""
        registry = RequestRegistry()
        future = registry.register("r1", "sendChatMessage")

        entry = registry.get("r1")
        assert entry is not None
        assert entry.timeout == 0
        assert entry.timer is None

        await asyncio.sleep(0.05)
        assert not future.done()

    @pytest.mark.asyncio
    async def test_positive_timeout_schedules_timer(self) -> None:
        """Default 30 second policy schedules a timer for that duration."""
        registry = RequestRegistry()
        registry.register("r1", "getCurrentProvider")

        entry = registry.get("r1")
        assert entry is not None
        assert entry.timeout == 30.0
        assert entry.timer is not None
        assert entry.timer.when() == pytest.approx(entry.created_at + 30.0)

    @pytest.mark.asyncio
    async def test_timeout_rejects(self) -> None:
        """Unsettled request rejects with RequestTimeoutError once elapsed."""
        registry = RequestRegistry(lambda key: 0.01)
        future = registry.register("r1", "getCurrentProvider")

        with pytest.raises(RequestTimeoutError) as exc_info:
            await future

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.key == "getCurrentProvider"
        assert "r1" not in registry

    @pytest.mark.asyncio
    async def test_response_after_timeout_has_no_effect(self) -> None:
        """A late response for a timed-out id is silently ignored."""
        registry = RequestRegistry(lambda key: 0.01)
        future = registry.register("r1", "getCurrentProvider")

        with pytest.raises(RequestTimeoutError):
            await future

        assert registry.resolve("r1", "late") is False
        assert isinstance(future.exception(), RequestTimeoutError)

    @pytest.mark.asyncio
    async def test_settlement_cancels_timer(self) -> None:
        """Resolving before the deadline cancels the timer."""
        registry = RequestRegistry()
        registry.register("r1", "getCurrentProvider")
        timer = registry.get("r1").timer  # type: ignore[union-attr]

        registry.resolve("r1", None)

        assert timer is not None
        assert timer.cancelled()


class TestSweep:
    """Tests for the stale-request sweep."""

    @pytest.mark.asyncio
    async def test_sweeps_requests_past_twice_their_timeout(self) -> None:
        """Entries older than 2x their timeout are rejected; younger ones stay."""
        registry = RequestRegistry()
        stale = registry.register("stale", "getCurrentProvider")
        registry.register("fresh", "selectFile")
        created = registry.get("stale").created_at  # type: ignore[union-attr]

        swept = registry.sweep(now=created + 61)

        assert swept == 1
        assert "fresh" in registry
        with pytest.raises(RequestTimeoutError):
            await stale

    @pytest.mark.asyncio
    async def test_sweep_skips_untimed_requests(self) -> None:
        """Requests with timeout 0 are never swept."""
        registry = RequestRegistry()
        registry.register("stream", "sendChatMessage")
        created = registry.get("stream").created_at  # type: ignore[union-attr]

        assert registry.sweep(now=created + 10_000) == 0
        assert "stream" in registry


class TestDispose:
    """Tests for teardown."""

    @pytest.mark.asyncio
    async def test_dispose_rejects_all(self) -> None:
        """Every pending request is rejected with RequestDisposedError."""
        registry = RequestRegistry()
        first = registry.register("r1", "sendChatMessage")
        second = registry.register("r2", "getCurrentProvider")
        timer = registry.get("r2").timer  # type: ignore[union-attr]

        assert registry.dispose() == 2

        for future in (first, second):
            with pytest.raises(RequestDisposedError):
                await future
        assert timer is not None and timer.cancelled()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_register_after_dispose_fails(self) -> None:
        """No new requests once disposed."""
        registry = RequestRegistry()
        registry.dispose()

        with pytest.raises(RequestDisposedError):
            registry.register("r1", "stopChat")
