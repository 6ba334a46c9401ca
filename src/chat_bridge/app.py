"""Chat Bridge server application.

Creates the Starlette ASGI application hosting a BridgeHost.

Routes:
- /health - Health check with connected-view count
- /ws     - WebSocket view channel (?view_id=...&view_type=...)
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from . import __version__
from .config import BridgeConfig
from .host import BridgeHost
from .transport.websocket import WebSocketViewTransport

logger = logging.getLogger(__name__)


async def health(request: Request) -> JSONResponse:
    host: BridgeHost = request.app.state.host
    return JSONResponse(
        {
            "status": "ok" if not host.is_closed else "shutting_down",
            "version": __version__,
            "session_id": host.config.session_id,
            "connected_views": host.views.get_connected_count(),
            "streaming": host.controller.is_streaming,
        }
    )


async def view_socket(websocket: WebSocket) -> None:
    """Serve one view over WebSocket until it disconnects."""
    host: BridgeHost = websocket.app.state.host
    view_id = websocket.query_params.get("view_id") or f"view-{uuid.uuid4().hex[:8]}"
    view_type = websocket.query_params.get("view_type", "chat")

    transport = WebSocketViewTransport(websocket)
    await transport.accept()
    host.register_view(view_id, transport, view_type)
    logger.info(f"WebSocket view connected: {view_id}")

    try:
        async for message in transport.receive_messages():
            host.receive(message, transport)
    finally:
        await transport.close()
        logger.info(f"WebSocket view disconnected: {view_id}")


def create_app(host: BridgeHost | None = None, config: BridgeConfig | None = None) -> Starlette:
    """Create the bridge server application.

    Args:
        host: Host to serve; created from ``config`` when omitted
        config: Configuration for a new host (defaults to the environment)

    Returns:
        Configured Starlette application
    """
    if host is None:
        host = BridgeHost(config or BridgeConfig.from_env())

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        await host.shutdown()

    routes = [
        Route("/health", health, methods=["GET"]),
        WebSocketRoute("/ws", view_socket),
    ]

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.host = host
    return app
