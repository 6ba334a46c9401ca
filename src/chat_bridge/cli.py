"""Chat Bridge CLI.

Usage:
    chat-bridge serve                           # Serve on http://127.0.0.1:4096
    chat-bridge serve --port 8080 --storage-dir ./chats
    chat-bridge serve --model-query myapp.model:query
    chat-bridge health                          # Check a running server

    chat-bridge history list --storage-dir ./chats
    chat-bridge history show default --storage-dir ./chats
    chat-bridge history clear default --storage-dir ./chats
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import click
import httpx

from . import __version__
from .config import BridgeConfig

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def format_datetime(value: int | float | str | None) -> str:
    """Format an epoch-millisecond or ISO timestamp for display."""
    if value is None:
        return "N/A"
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.rstrip("Z")).strftime("%Y-%m-%d %H:%M")
        except ValueError:
            return value
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def configure_logging(level: str) -> None:
    """Log to stderr so stdout stays clean for command output."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)


def load_model_query(spec: str) -> Any:
    """Import a model query given as ``module:attribute``.

    A class or zero-argument factory is called to produce the query.
    """
    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"Expected 'module:attribute', got '{spec}'", param_hint="--model-query")
    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"Cannot load '{spec}': {e}", param_hint="--model-query") from e
    if isinstance(target, type):
        return target()
    return target


@click.group()
@click.version_option(__version__, prog_name="chat-bridge")
def main() -> None:
    """Chat Bridge - host/view bridge for streaming AI chat."""


# =============================================================================
# Server
# =============================================================================


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=4096, help="Port to bind to")
@click.option("--session", "session_id", default=None, help="Conversation session id")
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for persisted history (in-memory when omitted)",
)
@click.option("--model-query", default=None, help="Model query to serve, as module:attribute")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level",
)
def serve(
    host: str,
    port: int,
    session_id: str | None,
    storage_dir: Path | None,
    model_query: str | None,
    log_level: str | None,
) -> None:
    """Run the bridge server (WebSocket views on /ws)."""
    import uvicorn

    from .app import create_app
    from .host import BridgeHost

    config = BridgeConfig.from_env(session_id=session_id, storage_dir=storage_dir, log_level=log_level)
    configure_logging(config.log_level)

    query = load_model_query(model_query) if model_query else None
    bridge = BridgeHost(config, query=query)

    click.echo(f"Starting Chat Bridge on http://{host}:{port} (session '{config.session_id}')", err=True)
    if query is None:
        click.echo("  Using the echo model (pass --model-query to serve a real model)", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(create_app(bridge), host=host, port=port, log_level=config.log_level.lower())


@main.command()
@click.option("--url", default="http://localhost:4096", help="Server URL")
def health(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


# =============================================================================
# History
# =============================================================================


@main.group()
def history() -> None:
    """Inspect persisted conversation history."""


def _open_store(storage_dir: Path | None) -> Any:
    from .chat.history_store import FileHistoryStore

    config = BridgeConfig.from_env(storage_dir=storage_dir)
    if config.storage_dir is None:
        raise click.UsageError("--storage-dir (or CHAT_BRIDGE_STORAGE_DIR) is required")
    return FileHistoryStore(config.storage_dir)


_storage_option = click.option(
    "--storage-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="History directory (defaults to CHAT_BRIDGE_STORAGE_DIR)",
)

_format_option = click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)


@history.command("list")
@_storage_option
@_format_option
def history_list(storage_dir: Path | None, output_format: str) -> None:
    """List stored sessions."""
    store = _open_store(storage_dir)
    sessions = [store.load_metadata(session_id) or {"session_id": session_id} for session_id in store.list_sessions()]

    if not sessions:
        click.echo("No sessions found.")
        return

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(sessions, indent=2, ensure_ascii=False, default=str))
        return

    click.echo(f"{'ID':<30} {'Messages':>8} {'Updated':<17}")
    click.echo("-" * 57)
    for s in sessions:
        click.echo(
            f"{truncate(s.get('session_id'), 30):<30} {s.get('message_count', 0):>8} "
            f"{format_datetime(s.get('updated')):<17}"
        )
    click.echo(f"\nTotal: {len(sessions)} session(s)")


@history.command("show")
@click.argument("session_id", default="default")
@_storage_option
@_format_option
def history_show(session_id: str, storage_dir: Path | None, output_format: str) -> None:
    """Show the transcript of a session."""
    from .chat.messages import dump_history

    store = _open_store(storage_dir)
    try:
        messages = dump_history(store.get(session_id))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SESSION_ID") from e

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(messages, indent=2, ensure_ascii=False))
        return

    if not messages:
        click.echo(f"No messages in session '{session_id}'.")
        return

    for message in messages:
        content = message["content"]
        if isinstance(content, list):
            content = " ".join(_describe_part(part) for part in content)
        when = format_datetime(message.get("metadata", {}).get("timestamp"))
        click.echo(f"[{when}] {message['role']:<9} {truncate(content, 100)}")


def _describe_part(part: dict[str, Any]) -> str:
    match part.get("type"):
        case "text":
            return part.get("text", "")
        case "tool-call":
            return f"<call {part.get('toolName')}#{part.get('toolCallId')}>"
        case "tool-result":
            return f"<result {part.get('toolName')}#{part.get('toolCallId')}: {part.get('output', {}).get('type')}>"
        case other:
            return f"<{other}>"


@history.command("clear")
@click.argument("session_id", default="default")
@_storage_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def history_clear(session_id: str, storage_dir: Path | None, yes: bool) -> None:
    """Delete the stored transcript of a session."""
    store = _open_store(storage_dir)
    if not yes:
        click.confirm(f"Delete history for session '{session_id}'?", abort=True)
    try:
        deleted = store.delete(session_id)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="SESSION_ID") from e

    if deleted:
        click.echo(f"Deleted history for session '{session_id}'.")
    else:
        click.echo(f"No history stored for session '{session_id}'.")


if __name__ == "__main__":
    main()
