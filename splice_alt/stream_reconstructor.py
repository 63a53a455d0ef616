"""
Stream Reconstructor: rebuild response bodies from intercepted chunks.

Each chunk goes two ways:
1. Forwarded to the sink exactly as received (the page must see the same bytes)
2. Decoded into a per-stream text buffer with a stateful UTF-8 decoder, so a
   multi-byte character split across two chunks still decodes correctly

Only responses whose URL is on the allow-list are opened. Chunks for any other
request id are forwarded and otherwise ignored.
"""

from __future__ import annotations

import codecs
import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger("splice-alt.stream")

# Host-side subscription filter (webRequest match patterns)
SUBSCRIPTION_PATTERNS: List[str] = [
    "*://api.splice.com/*",
    "*://*.api.splice.com/*",
]

# Paths worth buffering within the subscribed hosts
CAPTURE_PATH_MARKERS: List[str] = [
    "/v2/premium/samples/",
    "/www/me/premium",
]


class ChunkSink(Protocol):
    """Downstream side of the interception filter."""

    async def forward_chunk(self, request_id: str, chunk: bytes) -> None:
        ...


@dataclass(frozen=True)
class CompletedResponse:
    """A fully received response body."""
    request_id: str
    url: str
    text: str
    byte_count: int


@dataclass
class _OpenStream:
    url: str
    decoder: codecs.IncrementalDecoder
    parts: List[str] = field(default_factory=list)
    byte_count: int = 0


class StreamReconstructor:
    """Tracks open response streams keyed by request id."""

    def __init__(
        self,
        patterns: Optional[Sequence[str]] = None,
        path_markers: Optional[Sequence[str]] = None,
    ):
        self.patterns = list(patterns if patterns is not None else SUBSCRIPTION_PATTERNS)
        self.path_markers = list(path_markers if path_markers is not None else CAPTURE_PATH_MARKERS)
        self._streams: Dict[str, _OpenStream] = {}
        self._decoder_factory = codecs.getincrementaldecoder("utf-8")

    @property
    def open_count(self) -> int:
        return len(self._streams)

    def is_open(self, request_id: str) -> bool:
        return request_id in self._streams

    def wants(self, url: str) -> bool:
        """True when ``url`` matches a subscription pattern and a capture path."""
        if not url:
            return False
        if not any(fnmatch.fnmatchcase(url, pattern) for pattern in self.patterns):
            return False
        return any(marker in url for marker in self.path_markers)

    def open(self, request_id: str, url: str) -> bool:
        """Start buffering ``request_id``. Returns False for URLs off the allow-list."""
        if not self.wants(url):
            return False
        if request_id in self._streams:
            logger.warning(f"[STREAM] Request {request_id} reopened, discarding partial body")
        self._streams[request_id] = _OpenStream(url=url, decoder=self._decoder_factory(errors="replace"))
        logger.debug(f"[STREAM] Filtering response for {url}")
        return True

    async def feed(self, request_id: str, chunk: bytes, sink: ChunkSink) -> None:
        """Forward ``chunk`` unchanged, then append its decoded text if the stream is open."""
        await sink.forward_chunk(request_id, chunk)

        stream = self._streams.get(request_id)
        if stream is None:
            return
        stream.parts.append(stream.decoder.decode(chunk))
        stream.byte_count += len(chunk)

    def finish(self, request_id: str) -> Optional[CompletedResponse]:
        """Flush the decoder and release the stream. None if it was never opened."""
        stream = self._streams.pop(request_id, None)
        if stream is None:
            return None
        stream.parts.append(stream.decoder.decode(b"", final=True))
        completed = CompletedResponse(
            request_id=request_id,
            url=stream.url,
            text="".join(stream.parts),
            byte_count=stream.byte_count,
        )
        logger.debug(f"[STREAM] Completed {request_id}: {completed.byte_count} bytes from {stream.url}")
        return completed

    def abort(self, request_id: str) -> bool:
        """Drop a stream without producing a body (host reported an error)."""
        return self._streams.pop(request_id, None) is not None
