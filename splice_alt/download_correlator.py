"""
Download Correlator: match saved WAV files to captured records.

Per file-save event:

    FILTERED_OUT      wrong suffix or origin (terminal)
    LOOKING_UP        get(filename) -> get(base_name) -> find_fuzzy(base_name)
      hit  -> MATCHED            sidecar requested (terminal)
      miss -> RETRY_SCHEDULED    one re-check after retry_delay, exact keys only
                 hit  -> MATCHED
                 miss -> FAILED  logged (terminal)

At most two lookups per file. A record that shows up after the re-check is
not paired retroactively.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .correlation_cache import CorrelationCache
from .metadata import DEFAULT_SOURCE_SUFFIX, MetadataRecord, strip_suffix
from .sidecar_writer import SidecarWriter, WriteOutcome, last_path_segment

logger = logging.getLogger("splice-alt.correlate")

DEFAULT_RETRY_DELAY = 2.0
DEFAULT_ORIGIN_MARKER = "splice"


class DownloadState(str, Enum):
    FILTERED_OUT = "FILTERED_OUT"
    LOOKING_UP = "LOOKING_UP"
    MATCHED = "MATCHED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    FAILED = "FAILED"


TERMINAL_STATES = {DownloadState.FILTERED_OUT, DownloadState.MATCHED, DownloadState.FAILED}


@dataclass
class PendingDownload:
    """A file-save event on its way to a match."""
    full_path: str
    origin_url: str
    filename: str
    base_name: str
    download_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: DownloadState = DownloadState.LOOKING_UP
    match_attempts: int = 0
    matched_key: Optional[str] = None
    record: Optional[MetadataRecord] = None
    outcome: Optional[WriteOutcome] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, object]:
        return {
            "download_id": self.download_id,
            "full_path": self.full_path,
            "filename": self.filename,
            "base_name": self.base_name,
            "state": self.state.value,
            "match_attempts": self.match_attempts,
            "matched_key": self.matched_key,
            "record_id": self.record.record_id if self.record else None,
            "sidecar": self.outcome.to_dict() if self.outcome else None,
        }


class DownloadCorrelator:
    """Runs the lookup / single-retry policy for each saved file."""

    def __init__(
        self,
        cache: CorrelationCache,
        writer: SidecarWriter,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        source_suffix: str = DEFAULT_SOURCE_SUFFIX,
        origin_marker: str = DEFAULT_ORIGIN_MARKER,
    ):
        self.cache = cache
        self.writer = writer
        self.retry_delay = retry_delay
        self.source_suffix = source_suffix
        self.origin_marker = origin_marker

        self._pending: Dict[str, PendingDownload] = {}
        self._retry_tasks: Set[asyncio.Task] = set()
        self.stats = {
            "downloads_seen": 0,
            "filtered_out": 0,
            "matched_immediately": 0,
            "matched_on_retry": 0,
            "failed": 0,
        }

    @property
    def pending(self) -> List[PendingDownload]:
        return list(self._pending.values())

    def accepts(self, full_path: str, origin_url: str) -> bool:
        return full_path.endswith(self.source_suffix) and self.origin_marker in (origin_url or "")

    def _new_download(self, full_path: str, origin_url: str) -> PendingDownload:
        filename = last_path_segment(full_path)
        return PendingDownload(
            full_path=full_path,
            origin_url=origin_url,
            filename=filename,
            base_name=strip_suffix(filename, self.source_suffix),
        )

    def reject(self, full_path: str, origin_url: str) -> PendingDownload:
        """Record a download that will not be correlated (filtered or capture disabled)."""
        download = self._new_download(full_path, origin_url)
        download.state = DownloadState.FILTERED_OUT
        self.stats["filtered_out"] += 1
        return download

    async def on_file_saved(self, full_path: str, origin_url: str) -> PendingDownload:
        self.stats["downloads_seen"] += 1
        if not self.accepts(full_path, origin_url):
            logger.debug(f"[CORRELATE] Ignored download {full_path} from {origin_url}")
            return self.reject(full_path, origin_url)

        download = self._new_download(full_path, origin_url)
        filename = download.filename

        logger.info(f"[CORRELATE] WAV download detected: {filename}")
        logger.debug(f"[CORRELATE] Looking for keys {[download.filename, download.base_name]}")

        key, record = self._lookup(download, fuzzy=True)
        if record is not None:
            self.stats["matched_immediately"] += 1
            await self._match(download, key, record)
            return download

        logger.info(f"[CORRELATE] No metadata yet for {filename}, re-checking in {self.retry_delay}s")
        logger.debug(f"[CORRELATE] Available keys: {self.cache.keys()}")
        download.state = DownloadState.RETRY_SCHEDULED
        self._pending[download.download_id] = download
        task = asyncio.create_task(self._retry_after_delay(download))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)
        return download

    def _lookup(self, download: PendingDownload, fuzzy: bool):
        download.match_attempts += 1
        for key in (download.filename, download.base_name):
            record = self.cache.get(key)
            if record is not None:
                return key, record
        if fuzzy:
            entry = self.cache.find_fuzzy_entry(download.base_name, download.filename)
            if entry is not None:
                logger.info(f"[CORRELATE] Found metadata by partial match on '{entry[0]}' for {download.filename}")
                return entry
        return None, None

    async def _retry_after_delay(self, download: PendingDownload) -> None:
        try:
            await asyncio.sleep(self.retry_delay)
            key, record = self._lookup(download, fuzzy=False)
            if record is None:
                download.state = DownloadState.FAILED
                self.stats["failed"] += 1
                logger.warning(f"[CORRELATE] Still no metadata after delay for: {download.filename}")
                return
            self.stats["matched_on_retry"] += 1
            logger.info(f"[CORRELATE] Found delayed metadata for: {download.filename}")
            await self._match(download, key, record)
        finally:
            self._pending.pop(download.download_id, None)

    async def _match(self, download: PendingDownload, key: Optional[str], record: MetadataRecord) -> None:
        download.state = DownloadState.MATCHED
        download.matched_key = key
        download.record = record
        download.outcome = await self.writer.write(download.full_path, record)

    async def wait_idle(self) -> None:
        """Wait for every scheduled re-check to finish."""
        if self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)
