"""Unit tests for BridgeConfig."""

from __future__ import annotations

from pathlib import Path

import pytest

from chat_bridge import BridgeConfig

ENV_VARS = [
    "CHAT_BRIDGE_SESSION",
    "CHAT_BRIDGE_STORAGE_DIR",
    "CHAT_BRIDGE_DEFAULT_TIMEOUT",
    "CHAT_BRIDGE_SWEEP_INTERVAL",
    "CHAT_BRIDGE_PROVIDER",
    "CHAT_BRIDGE_MODEL",
    "CHAT_BRIDGE_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestBridgeConfig:
    """Tests for defaults, env loading and timeout policy."""

    def test_defaults(self) -> None:
        config = BridgeConfig()

        assert config.session_id == "default"
        assert config.storage_dir is None
        assert config.default_timeout == 30
        assert config.sweep_interval == 60

    def test_timeout_policy(self) -> None:
        """Streaming is untimed, pickers get longer, everything else the default."""
        config = BridgeConfig()

        assert config.timeout_for("sendChatMessage") == 0
        assert config.timeout_for("selectFile") == 60
        assert config.timeout_for("changeProvider") == 15
        assert config.timeout_for("showInformationMessage") == 30
        assert config.timeout_for("someNewOperation") == 30

    def test_overrides_are_per_instance(self) -> None:
        first = BridgeConfig()
        first.timeout_overrides["selectFile"] = 5

        assert BridgeConfig().timeout_for("selectFile") == 60

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("CHAT_BRIDGE_SESSION", "proj")
        monkeypatch.setenv("CHAT_BRIDGE_STORAGE_DIR", str(tmp_path))
        monkeypatch.setenv("CHAT_BRIDGE_DEFAULT_TIMEOUT", "12.5")
        monkeypatch.setenv("CHAT_BRIDGE_LOG_LEVEL", "debug")

        config = BridgeConfig.from_env()

        assert config.session_id == "proj"
        assert config.storage_dir == tmp_path
        assert config.default_timeout == 12.5
        assert config.log_level == "DEBUG"
        assert config.timeout_for("stopChat") == 12.5

    def test_explicit_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Keyword overrides beat the environment; None means not given."""
        monkeypatch.setenv("CHAT_BRIDGE_SESSION", "from-env")

        config = BridgeConfig.from_env(session_id="explicit", model=None, storage_dir="~/chats")

        assert config.session_id == "explicit"
        assert config.model == "echo-1"
        assert config.storage_dir == Path("~/chats").expanduser()

    def test_unknown_override(self) -> None:
        with pytest.raises(TypeError, match="bogus"):
            BridgeConfig.from_env(bogus=1)
