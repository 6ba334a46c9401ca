"""Unit tests for ViewApiClient.

The client talks to a recording transport; responses are fed back through
handle_message the way a real channel would deliver them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from chat_bridge.config import BridgeConfig
from chat_bridge.protocol import (
    HandlerError,
    RequestDisposedError,
    RequestTimeoutError,
    TransportError,
)
from chat_bridge.sdk import ViewApiClient
from chat_bridge.transport import DisposeNotifier


class RecordingTransport:
    """View-side transport that records outbound requests."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail = fail
        self._dispose = DisposeNotifier()

    def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise TransportError("offline")
        self.sent.append(message)

    def on_dispose(self, callback: Callable[[], None]) -> Callable[[], None]:
        return self._dispose.add(callback)

    async def close(self) -> None:
        self.closed = True
        self._dispose.fire()


def make_client(transport: RecordingTransport, **config: Any) -> ViewApiClient:
    return ViewApiClient(
        transport,
        view_id="panel",
        view_type="chat",
        session_id="s1",
        config=BridgeConfig(**config),
    )


async def next_request(transport: RecordingTransport) -> dict[str, Any]:
    """Wait until the client has sent a request, then return it."""
    while not transport.sent:
        await asyncio.sleep(0)
    return transport.sent.pop(0)


# =============================================================================
# Calls
# =============================================================================


class TestCall:
    """Tests for request issuing and settlement."""

    @pytest.mark.asyncio
    async def test_request_envelope_shape(self) -> None:
        """Wrapper builds a request with key, params and diagnostic context."""
        transport = RecordingTransport()
        client = make_client(transport)

        task = asyncio.create_task(client.change_provider("anthropic", "claude"))
        request = await next_request(transport)

        assert request["type"] == "request"
        assert request["key"] == "changeProvider"
        assert request["params"] == ["anthropic", "claude"]
        assert request["context"]["viewId"] == "panel"
        assert request["context"]["sessionId"] == "s1"

        client.handle_message({"type": "response", "id": request["id"], "value": {"success": True}})
        assert await task == {"success": True}
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_error_envelope_raises_handler_error(self) -> None:
        """An error envelope rejects the call with its message."""
        transport = RecordingTransport()
        client = make_client(transport)

        task = asyncio.create_task(client.get_current_provider())
        request = await next_request(transport)
        client.handle_message({"type": "error", "id": request["id"], "value": "no provider"})

        with pytest.raises(HandlerError, match="no provider") as exc_info:
            await task
        assert exc_info.value.key == "getCurrentProvider"

    @pytest.mark.asyncio
    async def test_send_failure_rejects_call(self) -> None:
        """A transport that cannot send rejects with TransportError."""
        client = make_client(RecordingTransport(fail=True))

        with pytest.raises(TransportError):
            await client.stop_chat()
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_timeout_policy_applies(self) -> None:
        """Calls time out according to the configured per-key policy."""
        transport = RecordingTransport()
        client = make_client(transport, timeout_overrides={"getCurrentProvider": 0.01})

        with pytest.raises(RequestTimeoutError):
            await client.get_current_provider()

    @pytest.mark.asyncio
    async def test_late_response_is_ignored(self) -> None:
        """A response after a timeout has no observable effect."""
        transport = RecordingTransport()
        client = make_client(transport, timeout_overrides={"getCurrentProvider": 0.01})

        with pytest.raises(RequestTimeoutError):
            await client.get_current_provider()

        request = transport.sent[0]
        client.handle_message({"type": "response", "id": request["id"], "value": "late"})
        assert client.pending_count == 0

    @pytest.mark.asyncio
    async def test_malformed_inbound_dropped(self) -> None:
        """Garbage inbound messages are dropped without raising."""
        client = make_client(RecordingTransport())

        client.handle_message("not json")
        client.handle_message({"type": "bogus"})
        client.handle_message({"type": "request", "id": "x", "key": "k", "params": []})


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    """Tests for event listeners."""

    @pytest.mark.asyncio
    async def test_listener_receives_params(self) -> None:
        """Listeners get the event value unpacked."""
        client = make_client(RecordingTransport())
        received: list[tuple[Any, ...]] = []
        client.add_listener("providerChanged", lambda *params: received.append(params))

        client.handle_message({"type": "event", "key": "providerChanged", "value": ["anthropic", "claude"]})

        assert received == [("anthropic", "claude")]

    @pytest.mark.asyncio
    async def test_wildcard_listener_gets_key(self) -> None:
        """The '*' listener receives the key first."""
        client = make_client(RecordingTransport())
        received: list[tuple[Any, ...]] = []
        client.add_listener("*", lambda *args: received.append(args))

        client.handle_message({"type": "event", "key": "chatStreamEnd", "value": []})

        assert received == [("chatStreamEnd",)]

    @pytest.mark.asyncio
    async def test_remove_listener(self) -> None:
        """The returned function unsubscribes."""
        client = make_client(RecordingTransport())
        received: list[Any] = []
        remove = client.add_listener("chatStreamEnd", lambda: received.append(1))

        remove()
        client.handle_message({"type": "event", "key": "chatStreamEnd", "value": []})

        assert received == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self) -> None:
        """A listener exception is logged and the next listener still runs."""
        client = make_client(RecordingTransport())
        received: list[Any] = []

        def broken() -> None:
            raise RuntimeError("listener bug")

        client.add_listener("chatStreamEnd", broken)
        client.add_listener("chatStreamEnd", lambda: received.append("ok"))

        client.handle_message({"type": "event", "key": "chatStreamEnd", "value": []})

        assert received == ["ok"]


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for close and disposal."""

    @pytest.mark.asyncio
    async def test_aclose_rejects_pending_before_closing(self) -> None:
        """Pending calls are rejected as disposed and the transport is closed."""
        transport = RecordingTransport()
        client = make_client(transport)
        task = asyncio.create_task(client.send_chat_message("hello"))
        await next_request(transport)

        await client.aclose()

        with pytest.raises(RequestDisposedError):
            await task
        assert transport.closed

    @pytest.mark.asyncio
    async def test_transport_dispose_rejects_pending(self) -> None:
        """If the channel closes underneath the client, pending calls fail."""
        transport = RecordingTransport()
        client = make_client(transport)
        task = asyncio.create_task(client.load_chat_history())
        await next_request(transport)

        await transport.close()

        with pytest.raises(RequestDisposedError):
            await task

    @pytest.mark.asyncio
    async def test_context_manager_runs_sweeper(self) -> None:
        """The async context manager starts and stops the stale sweep."""
        transport = RecordingTransport()
        async with make_client(transport, sweep_interval=0.01) as client:
            assert client._sweeper_task is not None
        assert client._sweeper_task is None
        assert transport.closed
