"""
Host bridge: the browser extension on the other end of /ws/host.

The extension owns the browser APIs (response filtering, downloads, sync
storage). It relays events here as JSON frames and carries out the chunk
forwarding and file writes this side asks for.

Inbound frames:  RESPONSE_STARTED, RESPONSE_CHUNK, RESPONSE_STOPPED,
                 RESPONSE_ERROR, RESPONSE_COMPLETED, FILE_SAVED, WRITE_RESULT,
                 SESSION_CONTEXT, GET_CONFIG, UPDATE_CONFIG, GET_STATS,
                 CLEAR_METADATA, METADATA_INTERCEPTED, PONG
Outbound frames: SUBSCRIBE, FORWARD_CHUNK, RELEASE, WRITE_FILE, PING, replies
"""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from fastapi import WebSocket

from .files.session_context import SessionContext
from .schemas import ConfigUpdate, FileSavedMessage
from .sidecar_writer import WriteOutcome, WriteRequest
from .stream_reconstructor import SUBSCRIPTION_PATTERNS

if TYPE_CHECKING:
    from .engine import CorrelationEngine

logger = logging.getLogger("splice-alt.host")


class HostSession:
    """One connected extension: chunk sink, write requester and message handler."""

    def __init__(self, websocket: WebSocket, blob_base_url: str, write_timeout: float = 10.0):
        self.websocket = websocket
        self.session_id = uuid.uuid4().hex[:8]
        self.blob_base_url = blob_base_url.rstrip("/")
        self.write_timeout = write_timeout
        self._pending_writes: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)

    async def subscribe(self) -> None:
        await self.send({"type": "SUBSCRIBE", "urlPatterns": SUBSCRIPTION_PATTERNS, "blocking": True})

    # ChunkSink
    async def forward_chunk(self, request_id: str, chunk: bytes) -> None:
        await self.send({
            "type": "FORWARD_CHUNK",
            "requestId": request_id,
            "data": base64.b64encode(chunk).decode("ascii"),
        })

    async def release(self, request_id: str) -> None:
        await self.send({"type": "RELEASE", "requestId": request_id})

    # FileWriteRequester
    async def request_write(self, request: WriteRequest) -> WriteOutcome:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_writes[request.request_id] = future
        try:
            await self.send({
                "type": "WRITE_FILE",
                "writeRequestId": request.request_id,
                "url": f"{self.blob_base_url}/blobs/{request.blob.blob_id}",
                "filename": request.target_name,
                "directory": request.directory,
                "conflictAction": "overwrite" if request.overwrite else "uniquify",
                "saveAs": request.interactive,
            })
            return await asyncio.wait_for(future, timeout=self.write_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[HOST] No write result for {request.target_name} within {self.write_timeout}s")
            return WriteOutcome(ok=False, error="Write result timed out", sidecar_filename=request.target_name)
        finally:
            self._pending_writes.pop(request.request_id, None)

    def resolve_write(self, message: Dict[str, Any]) -> bool:
        future = self._pending_writes.get(message.get("writeRequestId", ""))
        if future is None or future.done():
            logger.debug(f"[HOST] Unmatched write result: {message.get('writeRequestId')}")
            return False
        write_id = message.get("writeId")
        future.set_result(WriteOutcome(
            ok=bool(message.get("ok")),
            write_id=str(write_id) if write_id is not None else None,
            error=message.get("error"),
            sidecar_filename=message.get("filename"),
        ))
        return True

    def close(self) -> None:
        """Fail outstanding writes and cancel spawned work."""
        for future in self._pending_writes.values():
            if not future.done():
                future.set_result(WriteOutcome(ok=False, error="Host disconnected"))
        self._pending_writes.clear()
        for task in list(self._tasks):
            task.cancel()

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------

    async def handle(self, message: Dict[str, Any], engine: "CorrelationEngine") -> Optional[Dict[str, Any]]:
        """Apply one inbound frame. Returns a reply frame, if any."""
        msg_type = message.get("type", "")
        request_id = str(message.get("requestId", ""))

        if msg_type == "RESPONSE_STARTED":
            if engine.response_started(request_id, message.get("url", "")):
                return None
            # Not captured: the host detaches its filter before any chunk flows
            return {"type": "RELEASE", "requestId": request_id}

        if msg_type == "RESPONSE_CHUNK":
            chunk = base64.b64decode(message.get("data", ""))
            await engine.response_chunk(request_id, chunk, self)
            return None

        if msg_type == "RESPONSE_STOPPED":
            engine.response_stopped(request_id)
            await self.release(request_id)
            return None

        if msg_type == "RESPONSE_ERROR":
            engine.streams.abort(request_id)
            return None

        if msg_type == "RESPONSE_COMPLETED":
            self.spawn(engine.response_completed(message.get("url", ""), int(message.get("statusCode", 0))))
            return None

        if msg_type == "FILE_SAVED":
            saved = FileSavedMessage(**message)
            self.spawn(engine.file_saved(saved.fullPath, saved.originUrl))
            return None

        if msg_type == "WRITE_RESULT":
            self.resolve_write(message)
            return None

        if msg_type == "SESSION_CONTEXT":
            engine.set_session(SessionContext.from_extension_message(message))
            return {"type": "SESSION_CONTEXT_RESULT", "success": True}

        if msg_type == "GET_CONFIG":
            return {"type": "CONFIG", **engine.get_config().model_dump()}

        if msg_type == "UPDATE_CONFIG":
            config = await engine.update_config(ConfigUpdate(**(message.get("config") or {})))
            return {"type": "UPDATE_CONFIG_RESULT", "success": True, "config": config.model_dump()}

        if msg_type == "GET_STATS":
            return {"type": "STATS", **engine.get_stats().model_dump()}

        if msg_type == "CLEAR_METADATA":
            engine.clear_cache()
            return {"type": "CLEAR_METADATA_RESULT", "success": True}

        if msg_type == "METADATA_INTERCEPTED":
            # Older extension builds pushed bodies from the content script; acknowledged only
            logger.info(f"[HOST] Legacy metadata message from content script: {message.get('url')}")
            return {"type": "ACK", "success": True}

        if msg_type == "PONG":
            return None

        logger.warning(f"[HOST] Unknown message type: {msg_type!r}")
        return {"type": "ERROR", "error": "Unknown message type"}


class HostRelay:
    """Tracks connected extensions. Writes go to the most recently connected one."""

    def __init__(self):
        self.sessions: List[HostSession] = []

    def attach(self, session: HostSession) -> None:
        self.sessions.append(session)
        logger.info(f"[HOST] Extension connected ({session.session_id}), total: {len(self.sessions)}")

    def detach(self, session: HostSession) -> None:
        if session in self.sessions:
            self.sessions.remove(session)
        session.close()
        logger.warning(f"[HOST] Extension disconnected ({session.session_id}), remaining: {len(self.sessions)}")

    async def request_write(self, request: WriteRequest) -> WriteOutcome:
        if not self.sessions:
            return WriteOutcome(ok=False, error="No extension connected", sidecar_filename=request.target_name)
        return await self.sessions[-1].request_write(request)
