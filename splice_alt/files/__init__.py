"""
Files Module: staging and fetching helpers

Components:
- SessionContext: Browser session auth (cookies, headers) for replayed requests
- fetch_text: Async HTTP GET using that session
- BlobStore / MemoryBlobStore: Transient staging for sidecar content
"""

from .session_context import SessionContext
from .http_fetcher import fetch_text, HttpFetchResult
from .blob_store import BlobStore, MemoryBlobStore, StagedBlob

__all__ = [
    "SessionContext",
    "fetch_text",
    "HttpFetchResult",
    "BlobStore",
    "MemoryBlobStore",
    "StagedBlob",
]
