"""
Progress aggregation endpoint.

Provides WebSocket and REST endpoints for:
- Receiving moduleComplete events from node reporters (one persistent
  connection per node)
- Inspecting per-node progress while a run is in flight

The endpoint lives exactly as long as one orchestrated run.
"""

import asyncio
import json
import logging
import socket
from typing import Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, ValidationError
import uvicorn

from coordinator.config import DEFAULT_PROGRESS_PORT
from coordinator.progress import ProgressBoard
from core.errors import FleetBuildError
from worker.reporter import PROGRESS_SUBPROTOCOL


logger = logging.getLogger(__name__)


class ProgressMessage(BaseModel):
    """Completion count reported by a node."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(..., description="Message type")
    node_id: str = Field(..., alias="nodeID", description="Reporting node identifier")
    count: int = Field(..., description="Units completed so far", ge=0)


def handle_message(board: ProgressBoard, raw: str) -> bool:
    """
    Decode one text frame and apply it to the board.

    Frames that are not valid moduleComplete messages are discarded.

    Returns:
        True if the frame updated progress
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding undecodable progress frame: {raw[:80]!r}")
        return False

    if not isinstance(data, dict) or data.get('type') != 'moduleComplete':
        logger.debug(f"Ignoring progress frame of type {data.get('type') if isinstance(data, dict) else None!r}")
        return False

    try:
        message = ProgressMessage.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Discarding malformed moduleComplete frame: {e.errors()[0]['msg']}")
        return False

    return board.update(message.node_id, message.count)


# WebSocket connection manager

class ConnectionManager:
    """Owns the WebSocket connections opened by node reporters."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        """Accept new WebSocket connection."""
        requested = websocket.scope.get('subprotocols') or []
        subprotocol = PROGRESS_SUBPROTOCOL if PROGRESS_SUBPROTOCOL in requested else None
        await websocket.accept(subprotocol=subprotocol)
        self.active_connections.add(websocket)
        logger.debug(f"Reporter connected. Total connections: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        """Forget a WebSocket connection."""
        self.active_connections.discard(websocket)
        logger.debug(f"Reporter disconnected. Total connections: {len(self.active_connections)}")

    async def close_all(self):
        """Close every open connection."""
        for websocket in list(self.active_connections):
            try:
                await websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Error closing reporter connection: {e}")
            self.active_connections.discard(websocket)


def create_app(board: ProgressBoard, manager: Optional[ConnectionManager] = None) -> FastAPI:
    """
    Build the aggregation endpoint application.

    Args:
        board: Progress board receiving events
        manager: Connection manager (a fresh one if omitted)

    Returns:
        FastAPI application
    """
    app = FastAPI(title="Fleetbuild progress")
    app.state.board = board
    app.state.connections = manager or ConnectionManager()

    @app.get("/progress")
    async def get_progress():
        """Per-node progress snapshot."""
        return board.snapshot()

    @app.websocket("/")
    async def progress_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for node reporters.

        Each text frame carries one JSON event. Nothing is sent back.
        """
        connections: ConnectionManager = app.state.connections
        await connections.connect(websocket)

        try:
            while True:
                raw = await websocket.receive_text()
                handle_message(board, raw)

        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # Raised when the server side already closed the socket
            logger.debug(f"Reporter connection ended: {e}")
        finally:
            connections.disconnect(websocket)

    return app


class ProgressServer:
    """
    Runs the aggregation endpoint for one orchestrated run.

    The listening socket is bound in start() and released in stop();
    stop() is safe to call more than once.
    """

    def __init__(self, board: ProgressBoard, host: str = "0.0.0.0", port: int = DEFAULT_PROGRESS_PORT):
        """
        Initialize progress server.

        Args:
            board: Progress board receiving events
            host: Interface to listen on
            port: Port to listen on (0 picks a free port)
        """
        self.board = board
        self.host = host
        self.port = port

        self.connections = ConnectionManager()
        self.app = create_app(board, self.connections)

        self._server: Optional[uvicorn.Server] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """
        Bind the port and start serving.

        Raises:
            FleetBuildError: If the port cannot be bound
        """
        if self._task is not None:
            logger.warning("Progress server already running")
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise FleetBuildError(f"Cannot listen for progress on {self.host}:{self.port}: {e}")
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(self.app, log_level="warning", lifespan="off")
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise FleetBuildError("Progress server exited during startup")
            await asyncio.sleep(0.05)

        logger.info(f"Progress tracking server listening on port {self.port}")

    async def stop(self):
        """Close all reporter connections and release the port."""
        if self._task is None:
            return

        await self.connections.close_all()
        self._server.should_exit = True
        try:
            await self._task
        finally:
            self._task = None
            self._server = None

        logger.info("Progress tracking server stopped")

    def is_running(self) -> bool:
        """
        Check if the server is serving.

        Returns:
            True if running, False otherwise
        """
        return self._task is not None and not self._task.done()
