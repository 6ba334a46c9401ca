"""Bridge configuration.

Constructed explicitly and passed to the components that need it.
``BridgeConfig.from_env()`` reads ``CHAT_BRIDGE_*`` variables for the
server entry points.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .protocol.operations import DEFAULT_TIMEOUT, DEFAULT_TIMEOUTS, resolve_timeout


@dataclass
class BridgeConfig:
    """Configuration shared by host and view sides."""

    # Conversation
    session_id: str = "default"
    storage_dir: Path | None = None  # None -> in-memory history

    # Request timeouts (seconds, 0 = no timeout)
    default_timeout: float = DEFAULT_TIMEOUT
    timeout_overrides: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))
    sweep_interval: float = 60.0

    # Tool-call progress bookkeeping
    tool_estimated_duration: float = 90.0

    # Initial provider selection
    provider_id: str = "echo"
    model: str = "echo-1"

    log_level: str = "WARNING"

    def timeout_for(self, key: str) -> float:
        """Timeout policy for an operation key."""
        return resolve_timeout(key, self.timeout_overrides, self.default_timeout)

    @classmethod
    def from_env(cls, **overrides: object) -> BridgeConfig:
        """Build config from ``CHAT_BRIDGE_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        config = cls()

        if session := os.getenv("CHAT_BRIDGE_SESSION"):
            config.session_id = session
        if storage := os.getenv("CHAT_BRIDGE_STORAGE_DIR"):
            config.storage_dir = Path(storage).expanduser()
        if timeout := os.getenv("CHAT_BRIDGE_DEFAULT_TIMEOUT"):
            config.default_timeout = float(timeout)
        if interval := os.getenv("CHAT_BRIDGE_SWEEP_INTERVAL"):
            config.sweep_interval = float(interval)
        if provider := os.getenv("CHAT_BRIDGE_PROVIDER"):
            config.provider_id = provider
        if model := os.getenv("CHAT_BRIDGE_MODEL"):
            config.model = model
        if level := os.getenv("CHAT_BRIDGE_LOG_LEVEL"):
            config.log_level = level.upper()

        for name, value in overrides.items():
            if value is None:
                continue
            if not hasattr(config, name):
                raise TypeError(f"Unknown config option: {name}")
            setattr(config, name, value)

        if config.storage_dir is not None and not isinstance(config.storage_dir, Path):
            config.storage_dir = Path(config.storage_dir).expanduser()

        return config
