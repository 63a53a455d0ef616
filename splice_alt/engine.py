"""
Correlation Engine: one owned instance wiring the whole pipeline.

    stream_reconstructor -> record_extractor -> correlation_cache
                                                      ^
    file-save events -> download_correlator ----------+
                              |
                              v
                        sidecar_writer -> host write API

Built once per process and handed to the web layer. Nothing is persisted
except the user switches in the settings store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import DEFAULT_USER_CONFIG, MemorySettingsStore, Settings, SettingsStore
from .correlation_cache import CorrelationCache
from .download_correlator import DownloadCorrelator, PendingDownload
from .files.blob_store import BlobStore, MemoryBlobStore
from .files.http_fetcher import HttpFetchResult, fetch_text
from .files.session_context import SessionContext
from .metadata import MetadataRecord
from .notifications import NotificationBridge
from .record_extractor import SINGLE_SAMPLE_PATTERN, RecordExtractor
from .schemas import ConfigUpdate, EngineConfig, StatsResponse
from .sidecar_writer import FileWriteRequester, SidecarWriter
from .stream_reconstructor import ChunkSink, StreamReconstructor

logger = logging.getLogger("splice-alt.engine")


class CorrelationEngine:
    """Owns the cache, the pending downloads and every pipeline stage."""

    def __init__(
        self,
        settings: Settings,
        requester: FileWriteRequester,
        *,
        settings_store: Optional[SettingsStore] = None,
        blobs: Optional[BlobStore] = None,
        bridge: Optional[NotificationBridge] = None,
    ):
        self.settings = settings
        self.settings_store = settings_store or MemorySettingsStore()
        self.config = EngineConfig()
        self.session: Optional[SessionContext] = None

        self.bridge = bridge or NotificationBridge()
        self.blobs = blobs or MemoryBlobStore()
        self.cache = CorrelationCache(max_keys=settings.max_keys, keep_keys=settings.keep_keys)
        self.streams = StreamReconstructor()
        self.extractor = RecordExtractor(source_suffix=settings.source_suffix)
        self.writer = SidecarWriter(
            requester,
            self.blobs,
            self.bridge,
            source_suffix=settings.source_suffix,
            sidecar_suffix=settings.sidecar_suffix,
            grace_seconds=settings.blob_grace,
        )
        self.correlator = DownloadCorrelator(
            self.cache,
            self.writer,
            retry_delay=settings.retry_delay,
            source_suffix=settings.source_suffix,
            origin_marker=settings.origin_marker,
        )

        self.stats = {
            "responses_captured": 0,
            "records_captured": 0,
            "refetches": 0,
        }
        self._sweep_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.load_config()
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"[ENGINE] Started (enabled={self.config.enabled}, autoCapture={self.config.autoCapture}, "
            f"max_keys={self.cache.max_keys}, keep_keys={self.cache.keep_keys})"
        )

    async def stop(self) -> None:
        # Downloads already waiting on their re-check get it before shutdown
        await self.correlator.wait_idle()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("[ENGINE] Stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            evicted = self.cache.sweep()
            if evicted:
                logger.info(f"[ENGINE] Cleaned up old metadata, kept {len(self.cache)} entries")

    # ------------------------------------------------------------------
    # Configuration surface
    # ------------------------------------------------------------------

    async def load_config(self) -> EngineConfig:
        try:
            stored = await self.settings_store.get(dict(DEFAULT_USER_CONFIG))
            self.config = EngineConfig(**stored)
        except Exception as e:
            logger.error(f"[ENGINE] Failed to load configuration, using defaults: {e}")
            self.config = EngineConfig()
        return self.config

    def get_config(self) -> EngineConfig:
        return self.config

    async def update_config(self, update: ConfigUpdate) -> EngineConfig:
        changes = update.changes()
        self.config = self.config.model_copy(update=changes)
        await self.settings_store.set(self.config.model_dump())
        logger.info(f"[ENGINE] Configuration updated: {self.config.model_dump()}")
        return self.config

    def get_stats(self) -> StatsResponse:
        return StatsResponse(
            recordCount=len(self.cache),
            processedCount=self.writer.written,
            distinctRecords=len(self.cache.records()),
            pendingDownloads=len(self.correlator.pending),
            openStreams=self.streams.open_count,
            responsesCaptured=self.stats["responses_captured"],
            parseErrors=self.extractor.parse_errors,
            correlationFailures=self.correlator.stats["failed"],
            writeFailures=self.writer.failed,
        )

    def clear_cache(self) -> int:
        removed = self.cache.clear()
        self.writer.written = 0
        return removed

    def list_records(self) -> List[Dict[str, Any]]:
        return [record.summary() for record in self.cache.records()]

    def set_session(self, ctx: SessionContext) -> None:
        self.session = ctx
        logger.info(f"[ENGINE] Session context updated: {ctx}")

    # ------------------------------------------------------------------
    # Response capture
    # ------------------------------------------------------------------

    def response_started(self, request_id: str, url: str) -> bool:
        """Open a capture stream when capturing is on and the URL is allow-listed."""
        if not self.config.capturing:
            return False
        return self.streams.open(request_id, url)

    async def response_chunk(self, request_id: str, chunk: bytes, sink: ChunkSink) -> None:
        await self.streams.feed(request_id, chunk, sink)

    def response_stopped(self, request_id: str) -> List[MetadataRecord]:
        completed = self.streams.finish(request_id)
        if completed is None:
            return []
        return self.ingest_text(completed.text, completed.url)

    def ingest_text(self, text: str, url: str) -> List[MetadataRecord]:
        """Extract records from a full body, cache them and announce each one."""
        records = self.extractor.extract(text, url)
        if records:
            self.stats["responses_captured"] += 1
        for record in records:
            keys = self.cache.put(record)
            self.stats["records_captured"] += 1
            logger.info(f"[ENGINE] Stored metadata for keys: {keys}")
            self.bridge.record_captured(record)
        return records

    async def response_completed(self, url: str, status_code: int = 200) -> List[MetadataRecord]:
        """
        Fallback for hosts without response filtering: the response finished
        but its body never reached us, so fetch a single-sample URL ourselves.
        """
        if not self.config.capturing or status_code != 200:
            return []
        if not (self.streams.wants(url) and SINGLE_SAMPLE_PATTERN.search(url)):
            return []

        self.stats["refetches"] += 1
        logger.info(f"[ENGINE] Attempting to fetch sample data: {url}")
        result: HttpFetchResult = await fetch_text(self.session, url)
        if not result.ok:
            logger.warning(f"[ENGINE] Fetch failed with status {result.status}: {result.error}")
            return []
        return self.ingest_text(result.text, url)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    async def file_saved(self, full_path: str, origin_url: str) -> PendingDownload:
        if not self.config.capturing:
            return self.correlator.reject(full_path, origin_url)
        return await self.correlator.on_file_saved(full_path, origin_url)
