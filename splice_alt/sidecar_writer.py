"""
Sidecar Writer: emit "<sample>.json" next to a downloaded "<sample>.wav".

The content is the captured API item, pretty-printed, unchanged. Writes are
requested with overwrite semantics and without a save dialog. The staged
content is revoked after a grace period whatever the outcome.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .files.blob_store import BlobStore, StagedBlob
from .metadata import DEFAULT_SOURCE_SUFFIX, MetadataRecord
from .notifications import NotificationBridge

logger = logging.getLogger("splice-alt.sidecar")

DEFAULT_SIDECAR_SUFFIX = ".json"
DEFAULT_GRACE_SECONDS = 5.0

_SEPARATORS = re.compile(r"[\\/]")
_DRIVE = re.compile(r"[A-Za-z]:")


def last_path_segment(path: str) -> str:
    """Final component of a POSIX or Windows style path."""
    return _SEPARATORS.split(path)[-1]


def parent_directory(path: str) -> str:
    """Everything before the final component ("" for a bare filename)."""
    head = path[: len(path) - len(last_path_segment(path))]
    directory = head.rstrip("\\/")
    if head and (not directory or _DRIVE.fullmatch(directory)):
        # "/" and "C:\" keep their separator; bare "C:" is drive-relative
        return head[: len(directory) + 1]
    return directory


def sidecar_name_for(
    filename: str,
    source_suffix: str = DEFAULT_SOURCE_SUFFIX,
    sidecar_suffix: str = DEFAULT_SIDECAR_SUFFIX,
) -> str:
    """kick_808.wav -> kick_808.json. Names without the source suffix get the sidecar suffix appended."""
    if source_suffix and filename.endswith(source_suffix):
        return filename[: -len(source_suffix)] + sidecar_suffix
    return filename + sidecar_suffix


@dataclass(frozen=True)
class WriteRequest:
    """
    A request to the host to save a file.

    Attributes:
        blob: Staged content (served at /blobs/{blob_id})
        target_name: File name to save as
        directory: Directory of the original artifact
        overwrite: Replace an existing file without asking
        interactive: Show a save dialog
        request_id: Correlates the host's reply
    """
    blob: StagedBlob
    target_name: str
    directory: str = ""
    overwrite: bool = True
    interactive: bool = False
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def target_path(self) -> str:
        return str(Path(self.directory) / self.target_name) if self.directory else self.target_name


@dataclass(frozen=True)
class WriteOutcome:
    """
    Result of a write request.

    Attributes:
        ok: True if the host accepted the write
        write_id: Host-side identifier of the write (download id, path)
        error: Error message if rejected
        sidecar_filename: Name of the sidecar that was requested
    """
    ok: bool
    write_id: Optional[str] = None
    error: Optional[str] = None
    sidecar_filename: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "write_id": self.write_id,
            "error": self.error,
            "sidecar_filename": self.sidecar_filename,
        }


class FileWriteRequester(Protocol):
    """Host file-write API."""

    async def request_write(self, request: WriteRequest) -> WriteOutcome:
        ...


class DirectoryWriteRequester:
    """Writes straight into the artifact's directory on the local filesystem."""

    def __init__(self, default_dir: Optional[str] = None):
        self.default_dir = default_dir

    async def request_write(self, request: WriteRequest) -> WriteOutcome:
        directory = Path(request.directory or self.default_dir or ".")
        target = directory / request.target_name
        if target.exists() and not request.overwrite:
            return WriteOutcome(ok=False, error=f"{target} exists", sidecar_filename=request.target_name)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            target.write_bytes(request.blob.content)
        except OSError as e:
            return WriteOutcome(ok=False, error=str(e), sidecar_filename=request.target_name)
        return WriteOutcome(ok=True, write_id=str(target), sidecar_filename=request.target_name)


class SidecarWriter:
    """Serializes matched records and asks the host to save them."""

    def __init__(
        self,
        requester: FileWriteRequester,
        blobs: BlobStore,
        bridge: Optional[NotificationBridge] = None,
        *,
        source_suffix: str = DEFAULT_SOURCE_SUFFIX,
        sidecar_suffix: str = DEFAULT_SIDECAR_SUFFIX,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self.requester = requester
        self.blobs = blobs
        self.bridge = bridge
        self.source_suffix = source_suffix
        self.sidecar_suffix = sidecar_suffix
        self.grace_seconds = grace_seconds
        self.written = 0
        self.failed = 0

    @staticmethod
    def serialize(record: MetadataRecord) -> bytes:
        return json.dumps(record.payload, indent=2, ensure_ascii=False).encode("utf-8")

    async def write(self, full_path: str, record: MetadataRecord) -> WriteOutcome:
        original_name = last_path_segment(full_path)
        sidecar_name = sidecar_name_for(original_name, self.source_suffix, self.sidecar_suffix)

        blob = self.blobs.stage(self.serialize(record), sidecar_name)
        request = WriteRequest(blob=blob, target_name=sidecar_name, directory=parent_directory(full_path))
        logger.info(f"[SIDECAR] Requesting {request.target_path} for {record.filename}")

        try:
            outcome = await self.requester.request_write(request)
        except Exception as e:
            logger.error(f"[SIDECAR] Write request raised for {sidecar_name}: {e}")
            outcome = WriteOutcome(ok=False, error=str(e), sidecar_filename=sidecar_name)
        finally:
            self._schedule_revoke(blob.blob_id)

        if not outcome.ok:
            self.failed += 1
            logger.error(f"[SIDECAR] Failed to create {sidecar_name}: {outcome.error}")
            return outcome

        self.written += 1
        logger.info(f"[SIDECAR] Created {sidecar_name} (write_id={outcome.write_id})")
        if self.bridge is not None:
            self.bridge.sidecar_written(original_name, sidecar_name)
        return outcome

    def _schedule_revoke(self, blob_id: str) -> None:
        loop = asyncio.get_running_loop()
        loop.call_later(self.grace_seconds, self.blobs.revoke, blob_id)
