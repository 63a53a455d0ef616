"""
Shared fixtures: API payloads, fake host sinks and write requesters.
"""

import os
import tempfile

# splice_alt.main builds its app at import time; keep it off the working directory
os.environ["SPLICE_ALT_LOG_FILE"] = ""
os.environ["SPLICE_ALT_SETTINGS_PATH"] = os.path.join(tempfile.mkdtemp(prefix="splice-alt-"), "settings.json")

import copy
from typing import List, Tuple

import pytest

from splice_alt.config import MemorySettingsStore, Settings
from splice_alt.engine import CorrelationEngine
from splice_alt.files.blob_store import MemoryBlobStore
from splice_alt.metadata import MetadataRecord
from splice_alt.sidecar_writer import WriteOutcome, WriteRequest

SINGLE_URL = "https://api.splice.com/v2/premium/samples/s1"
BATCH_URL = "https://api.splice.com/www/me/premium?page=1"
ORIGIN_URL = "https://splice.com/sounds/packs/808-essentials"

KICK_ITEM = {
    "sample": {
        "id": "s1",
        "path": "/samples/808_essentials/kick_808.wav",
        "file_hash": "abc123",
    },
    "sample_meta_data": {
        "filename": "kick_808.wav",
        "file_hash": "abc123",
        "tags": ["kick", "808", "hip hop"],
        "bpm": None,
        "key": None,
        "pack": {"name": "808 Essentials", "uuid": "p-808"},
    },
}


class RecordingSink:
    """ChunkSink that keeps every forwarded chunk."""

    def __init__(self):
        self.chunks: List[Tuple[str, bytes]] = []

    async def forward_chunk(self, request_id: str, chunk: bytes) -> None:
        self.chunks.append((request_id, chunk))

    def forwarded(self, request_id: str) -> bytes:
        return b"".join(chunk for rid, chunk in self.chunks if rid == request_id)


class FakeRequester:
    """FileWriteRequester that records requests and answers with a fixed outcome."""

    def __init__(self, ok: bool = True, error: str = None, raises: Exception = None):
        self.ok = ok
        self.error = error
        self.raises = raises
        self.requests: List[WriteRequest] = []

    async def request_write(self, request: WriteRequest) -> WriteOutcome:
        self.requests.append(request)
        if self.raises is not None:
            raise self.raises
        return WriteOutcome(
            ok=self.ok,
            write_id=f"w{len(self.requests)}" if self.ok else None,
            error=self.error,
            sidecar_filename=request.target_name,
        )


@pytest.fixture
def kick_item():
    return copy.deepcopy(KICK_ITEM)


@pytest.fixture
def kick_record(kick_item):
    return MetadataRecord.from_item(kick_item, "s1", source_url=SINGLE_URL)


@pytest.fixture
def make_record():
    def _make(filename, record_id=None, content_hash=None):
        item = {"sample_meta_data": {"filename": filename}, "sample": {"id": record_id}}
        if content_hash:
            item["sample_meta_data"]["file_hash"] = content_hash
        return MetadataRecord.from_item(item, record_id or filename.split(".")[0])
    return _make


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def requester():
    return FakeRequester()


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def fast_settings(tmp_path):
    return Settings(
        log_file="",
        settings_path=str(tmp_path / "settings.json"),
        retry_delay=0.05,
        blob_grace=0.05,
        sweep_interval=3600.0,
        write_timeout=2.0,
        public_base_url="http://testserver",
    )


@pytest.fixture
def engine(fast_settings, requester):
    return CorrelationEngine(fast_settings, requester, settings_store=MemorySettingsStore())
