"""Web dashboard: FastAPI routes plus a WebSocket feed of engine events."""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional, Sequence, Set

import uvicorn
from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from .config import LogLensConfig
from .engine import TailEngine
from .events import ErrorEvent, Event, FileAdded, FileRemoved, LineEvent
from .filters import LineFilter
from .state import LogHistory

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"
INIT_BACKLOG = 100
CLIENT_QUEUE_SIZE = 1000


class BroadcastHub:
    """Bridges engine threads to the event loop serving WebSocket clients.

    Each client owns a bounded queue; when it is full the oldest pending
    message is dropped so a slow browser never stalls the engine.
    """

    def __init__(
        self,
        history: LogHistory,
        line_filter: Optional[LineFilter] = None,
        queue_size: int = CLIENT_QUEUE_SIZE,
    ) -> None:
        self.history = history
        self.line_filter = line_filter or LineFilter()
        self.queue_size = queue_size
        self.clients: Set[asyncio.Queue] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._loop = loop

    def connect(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.clients.add(queue)
        return queue

    def disconnect(self, queue: asyncio.Queue) -> None:
        self.clients.discard(queue)

    def on_event(self, event: Event) -> None:
        """Engine consumer; runs on whichever thread processed the file."""

        message = self.to_message(event)
        if message is None:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._broadcast, message)
        except RuntimeError:
            logger.debug("Event loop closed; dropping %s message", message["type"])

    def to_message(self, event: Event) -> Optional[Dict[str, object]]:
        if isinstance(event, LineEvent):
            if not self.line_filter.should_include(event.text):
                return None
            entry = self.history.record(event)
            return {"type": "log", "data": entry.to_dict()}
        if isinstance(event, FileAdded):
            return {"type": "file_added", "file": event.path.name}
        if isinstance(event, FileRemoved):
            return {"type": "file_removed", "file": event.path.name}
        if isinstance(event, ErrorEvent):
            logger.error("Watcher error: %s", event.message)
            return {"type": "error", "kind": event.error_kind, "message": event.message}
        return None

    def _broadcast(self, message: Dict[str, object]) -> None:
        for queue in list(self.clients):
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)


def create_app(
    engine: TailEngine,
    files: Sequence[Path],
    *,
    history: Optional[LogHistory] = None,
    line_filter: Optional[LineFilter] = None,
) -> FastAPI:
    """Build the dashboard app. The engine is started and stopped with the app."""

    history = history or LogHistory()
    hub = BroadcastHub(history, line_filter)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.bind(asyncio.get_running_loop())
        unsubscribe = engine.subscribe(hub.on_event)
        await run_in_threadpool(engine.start, files)
        try:
            yield
        finally:
            await run_in_threadpool(engine.stop)
            unsubscribe()
            hub.bind(None)

    app = FastAPI(title="LogLens Dashboard", lifespan=lifespan)
    app.state.engine = engine
    app.state.history = history
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def index():
        return FileResponse(STATIC_DIR / "index.html", media_type="text/html")

    @app.get("/api/files")
    async def list_files():
        tracked = [str(path) for path in engine.list_tracked_files()]
        return {"files": tracked, "count": len(tracked)}

    @app.get("/api/logs")
    async def recent_logs(limit: int = Query(100, ge=0)):
        return {"logs": [entry.to_dict() for entry in history.recent(limit)]}

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "uptime": round(time.monotonic() - started_at, 3),
            "files": len(engine.list_tracked_files()),
            "clients": len(hub.clients),
        }

    @app.websocket("/ws")
    async def stream(websocket: WebSocket):
        await websocket.accept()
        queue = hub.connect()
        logger.info("Client connected")
        await websocket.send_json(
            {
                "type": "init",
                "logs": [entry.to_dict() for entry in history.recent(INIT_BACKLOG)],
                "files": [path.name for path in engine.list_tracked_files()],
            }
        )

        async def sender() -> None:
            while True:
                await websocket.send_json(await queue.get())

        send_task = asyncio.create_task(sender())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("Client disconnected")
        finally:
            hub.disconnect(queue)
            send_task.cancel()
            await asyncio.gather(send_task, return_exceptions=True)

    return app


def start_server(config: LogLensConfig, files: Sequence[Path]) -> None:
    """Run the dashboard with uvicorn until interrupted."""

    options = config.tail_options()
    options.follow = True
    engine = TailEngine(options)
    app = create_app(
        engine,
        files,
        history=LogHistory(config.history_size),
        line_filter=LineFilter.from_config(config),
    )
    logger.info("Starting dashboard on http://%s:%s", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_level="warning")
