"""Integration tests: views talking to a host over in-memory pipes."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from chat_bridge import BridgeConfig, BridgeHost
from chat_bridge.chat import CancellationToken, EchoModelQuery
from chat_bridge.protocol import HandlerError, RequestDisposedError
from chat_bridge.transport import connect_in_memory


class WaitForStopQuery:
    """Streams one chunk, then waits to be cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def __call__(self, history, token: CancellationToken, on_delta):
        on_delta({"role": "assistant", "content": "thinking"})
        self.started.set()
        await token.wait()
        token.raise_if_cancelled()


def collect(client) -> list[tuple[Any, ...]]:
    events: list[tuple[Any, ...]] = []
    client.add_listener("*", lambda key, *params: events.append((key, *params)))
    return events


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig(session_id="loop", sweep_interval=0)


class TestLoopback:
    """Round trips through a BridgeHost."""

    @pytest.mark.anyio
    async def test_echo_turn_streams_to_every_view(self, config: BridgeConfig) -> None:
        """Both connected views see the stream; the caller gets the result."""
        host = BridgeHost(config, query=EchoModelQuery(delay=0))
        panel = connect_in_memory(host, "panel")
        sidebar = connect_in_memory(host, "sidebar")
        panel_events = collect(panel)
        sidebar_events = collect(sidebar)

        result = await panel.send_chat_message("hello world")
        await host.drain()

        assert result == {"status": "completed"}
        keys = [event[0] for event in panel_events]
        assert keys[0] == "chatStreamStart"
        assert keys[-1] == "chatStreamEnd"
        assert "chatToolResult" in keys
        chunks = [event[1] for event in panel_events if event[0] == "chatResponseChunk" and event[2] == "assistant"]
        assert "".join(chunks) == "hello world"
        assert sidebar_events == panel_events

        history = await sidebar.load_chat_history()
        assert (history[0]["role"], history[0]["content"]) == ("user", "hello world")
        assert history[-1]["content"] == "hello world"
        await host.shutdown()

    @pytest.mark.anyio
    async def test_stop_from_another_call(self, config: BridgeConfig) -> None:
        """stopChat is served while sendChatMessage is still running."""
        query = WaitForStopQuery()
        host = BridgeHost(config, query=query)
        view = connect_in_memory(host, "panel")
        events = collect(view)

        turn = asyncio.create_task(view.send_chat_message("go"))
        await query.started.wait()

        assert await view.stop_chat() == {"stopped": True}
        assert await turn == {"status": "stopped"}
        keys = [event[0] for event in events]
        assert "chatStopped" in keys
        assert "chatStreamEnd" not in keys
        await host.shutdown()

    @pytest.mark.anyio
    async def test_provider_change_notifies_views(self, config: BridgeConfig) -> None:
        host = BridgeHost(config)
        panel = connect_in_memory(host, "panel")
        other = connect_in_memory(host, "other")
        events = collect(other)

        result = await panel.change_provider("anthropic", "claude")
        await host.drain()

        assert result["success"] is True
        assert ("providerChanged", "anthropic", "claude") in events
        assert await other.get_current_provider() == {"providerId": "anthropic", "model": "claude"}
        await host.shutdown()

    @pytest.mark.anyio
    async def test_history_save_broadcasts_load(self, config: BridgeConfig) -> None:
        host = BridgeHost(config)
        panel = connect_in_memory(host, "panel")
        other = connect_in_memory(host, "other")
        events = collect(other)
        history = [{"role": "user", "content": "saved"}]

        await panel.save_chat_history(history)
        await host.drain()

        assert ("historyLoaded", history) in events
        assert await other.load_chat_history() == history

        await panel.clear_chat_history()
        await host.drain()

        assert events[-1] == ("historyLoaded", [])
        await host.shutdown()

    @pytest.mark.anyio
    async def test_handler_errors_reach_caller(self, config: BridgeConfig) -> None:
        host = BridgeHost(config)
        view = connect_in_memory(host, "panel")

        with pytest.raises(HandlerError, match="Unknown operation: selectFile"):
            await view.select_file()
        with pytest.raises(HandlerError, match="empty"):
            await view.send_chat_message("   ")
        await host.shutdown()

    @pytest.mark.anyio
    async def test_extra_handlers(self, config: BridgeConfig) -> None:
        host = BridgeHost(config, extra_handlers={"selectFile": lambda: "/tmp/notes.md"})
        view = connect_in_memory(host, "panel")

        assert await view.select_file() == "/tmp/notes.md"
        await host.shutdown()


class TestTeardown:
    """Tests for disconnect and shutdown."""

    @pytest.mark.anyio
    async def test_shutdown_rejects_pending_calls(
        self, config: BridgeConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Calls still in flight when the host shuts down are rejected."""
        monkeypatch.setattr("chat_bridge.host.SHUTDOWN_GRACE", 0.01)
        started = asyncio.Event()

        async def never_answers() -> None:
            started.set()
            await asyncio.Event().wait()

        host = BridgeHost(config, extra_handlers={"selectFolder": never_answers})
        view = connect_in_memory(host, "panel")

        pending = asyncio.create_task(view.select_folder())
        await started.wait()
        await host.shutdown()

        with pytest.raises(RequestDisposedError):
            await pending
        assert host.views.get_connected_count() == 0
        assert view.pending_count == 0

    @pytest.mark.anyio
    async def test_shutdown_stops_running_turn(self, config: BridgeConfig) -> None:
        query = WaitForStopQuery()
        host = BridgeHost(config, query=query)
        view = connect_in_memory(host, "panel")
        events = collect(view)

        turn = asyncio.create_task(view.send_chat_message("go"))
        await query.started.wait()
        await host.shutdown()

        assert "chatStopped" in [event[0] for event in events]
        assert host.controller.is_streaming is False
        assert await turn == {"status": "stopped"}

    @pytest.mark.anyio
    async def test_view_close_unregisters(self, config: BridgeConfig) -> None:
        host = BridgeHost(config)
        view = connect_in_memory(host, "panel")
        connect_in_memory(host, "other")

        await view.aclose()

        assert host.views.view_ids() == ["other"]
        assert host.broadcast("chatStreamStart") == 1
        await host.shutdown()

    @pytest.mark.anyio
    async def test_host_drops_messages_after_shutdown(self, config: BridgeConfig) -> None:
        host = BridgeHost(config)
        view = connect_in_memory(host, "panel")
        await host.shutdown()

        assert host.is_closed is True
        assert view.requests.is_disposed is True
