"""
HTTP and WebSocket server for logreplay.

Endpoints:
    GET  /api/health   liveness check
    WS   /ws           replay channel

WebSocket protocol (JSON text frames):
    client -> server   {"event": "replay", "data": {"logContent": "...", "logType": "nginx"}}
    server -> client   {"event": "output", "data": {"type": "stdout", "data": "..."}}
                       {"event": "output", "data": {"type": "exit", "data": "...", "code": 0}}

Every replay request produces a stream of output events that ends with
exactly one exit event. Each connection has its own session; a replay
runs as a separate task so a disconnect is noticed while it is in flight.
A disconnect drops the session but does not stop the pipeline: its
processes run to completion and its temp files are still removed.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from logreplay import __version__
from logreplay.config import Settings, load_settings
from logreplay.orchestrator import ReplayOrchestrator
from logreplay.schema import OutputEvent, ReplayRequest
from logreplay.session import SessionRegistry

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[], ReplayOrchestrator]

REPLAY_EVENT = "replay"
OUTPUT_EVENT = "output"


class ReplayConnection:
    """
    One client connected to the replay channel.

    Attributes:
        connection_id: Random identity of this connection
        websocket: The underlying socket
        sessions: Registry the connection registers itself in
        closed: Set once the client has gone away
    """

    def __init__(
        self,
        websocket: WebSocket,
        sessions: SessionRegistry,
        orchestrator_factory: OrchestratorFactory,
        tasks: set[asyncio.Task],
    ) -> None:
        self.connection_id = uuid.uuid4().hex
        self.websocket = websocket
        self.sessions = sessions
        self.orchestrator_factory = orchestrator_factory
        self.closed = False
        self._tasks = tasks
        self._send_lock = asyncio.Lock()

    async def emit(self, event: OutputEvent) -> None:
        """Send one output event; silently dropped once the client is gone."""
        if self.closed:
            return
        try:
            async with self._send_lock:
                await self.websocket.send_json({"event": OUTPUT_EVENT, "data": event.to_wire()})
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self.closed = True
            logger.debug("Dropping output for %s: %s", self.connection_id, e)

    async def serve(self) -> None:
        """Accept the socket and handle messages until it closes."""
        await self.websocket.accept()
        self.sessions.on_connect(self.connection_id)
        logger.info("Client connected (%s)", self.connection_id)
        try:
            while True:
                message = await self.websocket.receive_text()
                await self.dispatch(message)
        except WebSocketDisconnect:
            pass
        finally:
            self.closed = True
            self.sessions.on_disconnect(self.connection_id)
            logger.info("Client disconnected (%s)", self.connection_id)

    async def dispatch(self, message: str) -> None:
        """Route one inbound text frame."""
        try:
            envelope: Any = json.loads(message)
        except ValueError:
            await self._reject("Malformed message: not JSON.")
            return
        if not isinstance(envelope, dict):
            await self._reject("Malformed message: expected an object.")
            return

        event = envelope.get("event")
        if event != REPLAY_EVENT:
            logger.debug("Ignoring unknown event %r from %s", event, self.connection_id)
            return

        try:
            request = ReplayRequest.model_validate(envelope.get("data") or {})
        except ValidationError as e:
            await self._reject(f"Invalid replay request: {e.error_count()} invalid field(s).")
            return

        task = asyncio.create_task(self._replay(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _replay(self, request: ReplayRequest) -> None:
        orchestrator = self.orchestrator_factory()
        try:
            result = await orchestrator.run(request.log_content, request.log_type, self.emit)
        except Exception as e:
            # The stream was already closed with error + exit by the orchestrator
            logger.error("Replay error on %s: %s", self.connection_id, e)
            return
        if result is not None:
            self.sessions.on_replay_complete(self.connection_id, result)

    async def _reject(self, message: str) -> None:
        await self.emit(OutputEvent.error(message))
        await self.emit(OutputEvent.exit(1, "Validation failed"))


def create_app(
    settings: Settings | None = None,
    orchestrator_factory: OrchestratorFactory | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Resolved settings (loaded from the environment if omitted)
        orchestrator_factory: Creates one orchestrator per replay request

    Returns:
        The configured application; its state holds settings and sessions
    """
    settings = settings or load_settings()
    if orchestrator_factory is None:
        def orchestrator_factory() -> ReplayOrchestrator:
            return ReplayOrchestrator(settings)

    app = FastAPI(title="logreplay", version=__version__)
    app.state.settings = settings
    app.state.sessions = SessionRegistry()
    app.state.replay_tasks = set()

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/ws")
    async def replay_channel(websocket: WebSocket) -> None:
        connection = ReplayConnection(
            websocket,
            app.state.sessions,
            orchestrator_factory,
            app.state.replay_tasks,
        )
        await connection.serve()

    return app


def serve(settings: Settings | None = None) -> None:
    """Run the server with uvicorn until interrupted."""
    import uvicorn

    settings = settings or load_settings()
    logger.info(
        "Server running on http://%s:%d (mode: %s)",
        settings.host,
        settings.port,
        settings.mode.value,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
