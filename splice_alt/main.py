"""
Splice Alt Backend: FastAPI WebSocket Server

This is the correlation engine the browser extension talks to:
1. Accepts the extension on /ws/host (intercepted responses, saved downloads)
2. Accepts status panels on /ws/panel (capture / sidecar notifications)
3. Serves staged sidecar content on /blobs/{id}
4. Exposes the popup's config / stats / clear controls over REST
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pythonjsonlogger import jsonlogger

from . import __version__
from .config import JsonFileSettingsStore, Settings, get_settings
from .engine import CorrelationEngine
from .files.session_context import SessionContext
from .host import HostRelay, HostSession
from .notifications import QueueListener, WebhookListener
from .schemas import ConfigUpdate, EngineConfig, IngestRequest, RecordSummary, StatsResponse
from .sidecar_writer import DirectoryWriteRequester

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(record)


def setup_logging(settings: Settings) -> logging.Logger:
    """Console + rotating JSON file + error file handlers on the 'splice-alt' logger."""

    logger = logging.getLogger("splice-alt")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    # Console handler with colors for readability during development
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.log_level, logging.INFO))
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%H:%M:%S'
    ))
    logger.addHandler(console_handler)

    if not settings.log_file:
        return logger

    # Rotating file handler for structured JSON logs. Rotates daily, keeps 7 days.
    file_handler = TimedRotatingFileHandler(
        settings.log_file, when="midnight", interval=1, backupCount=7, encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
    ))
    logger.addHandler(file_handler)

    # Plain error log
    error_log = settings.log_file.rsplit(".", 1)[0] + ".error.log"
    error_handler = logging.FileHandler(error_log, mode='a', encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(error_handler)

    return logger


# ============================================================================
# APPLICATION
# ============================================================================

def build_engine(settings: Settings, relay: HostRelay) -> CorrelationEngine:
    requester = DirectoryWriteRequester() if settings.write_mode == "local" else relay
    engine = CorrelationEngine(
        settings,
        requester,
        settings_store=JsonFileSettingsStore(settings.settings_path),
    )
    if settings.notify_webhook_url:
        engine.bridge.add_listener(WebhookListener(settings.notify_webhook_url))
    return engine


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[CorrelationEngine] = None,
    relay: Optional[HostRelay] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logger = setup_logging(settings)
    relay = relay or HostRelay()
    engine = engine or build_engine(settings, relay)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("  SPLICE ALT BACKEND STARTING")
        logger.info("=" * 60)
        logger.info(f"  Extension:    ws://{settings.host}:{settings.port}/ws/host")
        logger.info(f"  Status panel: ws://{settings.host}:{settings.port}/ws/panel")
        logger.info(f"  Sidecar mode: {settings.write_mode}")
        await engine.start()
        yield
        await engine.stop()
        logger.info("=" * 60)
        logger.info("  SPLICE ALT BACKEND SHUTTING DOWN")
        logger.info("=" * 60)

    app = FastAPI(
        title="Splice Alt Backend",
        description="Pairs downloaded samples with captured API metadata",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        """Service status."""
        return {
            "service": "Splice Alt Backend",
            "status": "running",
            "version": __version__,
            "connections": {
                "extension": len(relay.sessions),
                "panels": engine.bridge.listener_count,
            },
            "config": engine.get_config().model_dump(),
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/config", response_model=EngineConfig)
    async def get_config():
        return engine.get_config()

    @app.post("/config")
    async def update_config(update: ConfigUpdate):
        config = await engine.update_config(update)
        return {"success": True, "config": config.model_dump()}

    @app.get("/stats", response_model=StatsResponse)
    async def stats():
        return engine.get_stats()

    @app.delete("/cache")
    async def clear_cache():
        removed = engine.clear_cache()
        logger.warning(f"Metadata cache cleared ({removed} keys removed)")
        return {"success": True, "keys_removed": removed}

    @app.get("/records")
    async def list_records():
        records = [RecordSummary(**summary) for summary in engine.list_records()]
        return {"records": records, "count": len(records)}

    @app.get("/downloads/pending")
    async def pending_downloads():
        return {"pending": [d.to_dict() for d in engine.correlator.pending]}

    @app.post("/session/context")
    async def update_session_context(ctx_data: dict):
        ctx = SessionContext.from_extension_message(ctx_data)
        engine.set_session(ctx)
        return {
            "status": "ok",
            "base_url": ctx.base_url,
            "cookies_count": len(ctx.cookies),
            "headers_count": len(ctx.headers),
            "valid": ctx.is_valid(),
        }

    @app.post("/ingest")
    async def ingest(request: IngestRequest):
        """Whole-body capture for hosts that cannot stream chunks."""
        if not engine.get_config().capturing or not engine.streams.wants(request.url):
            return {"status": "ignored", "records": 0}
        records = engine.ingest_text(request.body, request.url)
        return {"status": "ok", "records": len(records), "filenames": [r.filename for r in records]}

    @app.get("/blobs/{blob_id}")
    async def get_blob(blob_id: str):
        blob = engine.blobs.get(blob_id)
        if blob is None:
            raise HTTPException(status_code=404, detail="Blob not found or revoked")
        return Response(
            content=blob.content,
            media_type=blob.mime_type,
            headers={"Content-Disposition": f'attachment; filename="{blob.filename}"'},
        )

    @app.websocket("/ws/host")
    async def host_websocket_endpoint(websocket: WebSocket):
        """
        WebSocket endpoint for the browser extension.

        Chunk frames are handled inline so forwarding keeps arrival order.
        """
        await websocket.accept()
        session = HostSession(websocket, settings.public_base_url, settings.write_timeout)
        relay.attach(session)
        await session.subscribe()

        async def heartbeat():
            try:
                while True:
                    await asyncio.sleep(30)
                    try:
                        await websocket.send_json({"type": "PING", "timestamp": datetime.now().isoformat()})
                    except Exception:
                        break
            except asyncio.CancelledError:
                pass

        heartbeat_task = asyncio.create_task(heartbeat())

        try:
            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive_text(), timeout=120.0)
                except asyncio.TimeoutError:
                    try:
                        await websocket.send_json({"type": "PING", "timestamp": datetime.now().isoformat()})
                        continue
                    except Exception:
                        logger.warning("Extension connection stale - no response to ping")
                        break

                try:
                    message = json.loads(data)
                    reply = await session.handle(message, engine)
                    if reply is not None:
                        if message.get("messageId"):
                            reply["replyTo"] = message["messageId"]
                        await session.send(reply)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON from extension: {e}")
                    logger.error(f"Raw data: {data[:500]}...")
                except WebSocketDisconnect:
                    raise
                except Exception as e:
                    logger.error(f"Error processing extension message: {e}")
                    logger.exception("Full traceback:")

        except WebSocketDisconnect:
            pass
        finally:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass
            relay.detach(session)

    @app.websocket("/ws/panel")
    async def panel_websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for status panels. Receives notifications, may ask for stats."""
        await websocket.accept()
        listener = QueueListener()
        engine.bridge.add_listener(listener)

        async def pump():
            try:
                while True:
                    try:
                        event = await asyncio.wait_for(listener.next_event(), timeout=30.0)
                    except asyncio.TimeoutError:
                        event = {"type": "PING", "timestamp": datetime.now().isoformat()}
                    await websocket.send_json(event)
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Panel send loop ended: {e}")

        pump_task = asyncio.create_task(pump())

        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON from panel: {data[:200]}")
                    continue
                if message.get("type") == "GET_STATS":
                    listener.offer({"type": "STATS", **engine.get_stats().model_dump()})
        except WebSocketDisconnect:
            pass
        finally:
            listener.close()
            engine.bridge.remove_listener(listener)
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("splice_alt.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
