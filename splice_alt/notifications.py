"""
Notification Bridge: best-effort fan-out to presentation surfaces.

Two event kinds leave the engine:
- METADATA_CAPTURED  after a record is extracted
- JSON_CREATED       after a sidecar write is accepted by the host

Listeners:
1. QueueListener   - bounded asyncio.Queue drained by a status-panel socket
2. WebhookListener - fire-and-forget HTTP POST to an external observer

A listener that is full, closed or raising is treated as absent. Nothing here
can fail or slow the correlation path.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

import httpx

from .metadata import MetadataRecord

logger = logging.getLogger("splice-alt.notify")

METADATA_CAPTURED = "METADATA_CAPTURED"
JSON_CREATED = "JSON_CREATED"

DEFAULT_QUEUE_SIZE = 100


class Listener(Protocol):
    name: str

    def offer(self, event: Dict[str, Any]) -> bool:
        """Non-blocking delivery. False means the event was dropped."""
        ...


class QueueListener:
    """Bounded outbound channel for one connected panel."""

    def __init__(self, name: Optional[str] = None, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.name = name or f"panel-{uuid.uuid4().hex[:8]}"
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, event: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug(f"[NOTIFY] {self.name} queue full, event dropped")
            return False
        return True

    async def next_event(self) -> Dict[str, Any]:
        return await self.queue.get()

    def close(self) -> None:
        self.closed = True


class WebhookListener:
    """POSTs each event to an observer URL without waiting for the response."""

    def __init__(self, url: str, timeout_s: float = 2.0, name: str = "webhook"):
        self.name = name
        self.url = url
        self.timeout_s = timeout_s
        self._tasks: Set[asyncio.Task] = set()

    def offer(self, event: Dict[str, Any]) -> bool:
        try:
            task = asyncio.get_running_loop().create_task(self._post(event))
        except RuntimeError:
            # No running loop (called from sync code at shutdown)
            return False
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _post(self, event: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                await client.post(self.url, json=event)
            logger.debug(f"[NOTIFY] Webhook delivered: {event.get('type')}")
        except Exception as e:
            # Observer is optional
            logger.debug(f"[NOTIFY] Webhook POST failed (optional): {e}")


class NotificationBridge:
    """Fan-out of engine events to whatever listeners are attached."""

    def __init__(self):
        self._listeners: Dict[str, Listener] = {}
        self.delivered = 0
        self.dropped = 0

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: Listener) -> None:
        self._listeners[listener.name] = listener
        logger.debug(f"[NOTIFY] Listener attached: {listener.name}")

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.pop(listener.name, None)
        logger.debug(f"[NOTIFY] Listener detached: {listener.name}")

    def publish(self, event_type: str, data: Dict[str, Any]) -> int:
        """Offer the event to every listener. Returns how many accepted it."""
        event = {
            "type": event_type,
            **data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        accepted = 0
        for listener in list(self._listeners.values()):
            try:
                ok = listener.offer(event)
            except Exception as e:
                logger.debug(f"[NOTIFY] Listener {listener.name} failed: {e}")
                ok = False
            if ok:
                accepted += 1
            else:
                self.dropped += 1
        self.delivered += accepted
        return accepted

    def record_captured(self, record: MetadataRecord) -> int:
        return self.publish(METADATA_CAPTURED, {
            "filename": record.filename,
            "fileHash": record.content_hash,
            "recordId": record.record_id,
            "category": record.category.value,
        })

    def sidecar_written(self, original_filename: str, sidecar_filename: str) -> int:
        return self.publish(JSON_CREATED, {
            "filename": original_filename,
            "jsonFilename": sidecar_filename,
        })
