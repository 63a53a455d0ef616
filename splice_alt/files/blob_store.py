"""
Blob Store: short-lived staging area for sidecar content.

The browser can only save files it downloads from a URL. A staged blob gets
an id, is served at /blobs/{id} until revoked, and is revoked a few seconds
after the write was requested whether or not the write succeeded.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

logger = logging.getLogger("splice-alt.blobs")


@dataclass(frozen=True)
class StagedBlob:
    """
    A staged piece of content.

    Attributes:
        blob_id: Unique identifier, also the URL path segment
        content: Raw bytes to serve
        filename: Name offered in Content-Disposition
        mime_type: Content type to serve with
        staged_at: ISO 8601 timestamp
    """
    blob_id: str
    content: bytes = field(repr=False)
    filename: str
    mime_type: str = "application/json"
    staged_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class BlobStore(Protocol):
    """Staging interface used by the sidecar writer."""

    def stage(self, content: bytes, filename: str, mime_type: str = "application/json") -> StagedBlob:
        ...

    def get(self, blob_id: str) -> Optional[StagedBlob]:
        ...

    def revoke(self, blob_id: str) -> bool:
        ...


class MemoryBlobStore:
    """Blobs held in process memory."""

    def __init__(self):
        self._blobs: Dict[str, StagedBlob] = {}

    def __len__(self) -> int:
        return len(self._blobs)

    def stage(self, content: bytes, filename: str, mime_type: str = "application/json") -> StagedBlob:
        blob = StagedBlob(blob_id=uuid.uuid4().hex, content=content, filename=filename, mime_type=mime_type)
        self._blobs[blob.blob_id] = blob
        logger.debug(f"[BLOB] Staged {blob.blob_id} ({blob.size_bytes} bytes, {filename})")
        return blob

    def get(self, blob_id: str) -> Optional[StagedBlob]:
        return self._blobs.get(blob_id)

    def revoke(self, blob_id: str) -> bool:
        removed = self._blobs.pop(blob_id, None) is not None
        if removed:
            logger.debug(f"[BLOB] Revoked {blob_id}")
        return removed
