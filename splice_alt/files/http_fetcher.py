"""
HTTP Fetcher: replay an API request with the browser's session credentials.

Used only on the fallback path, when the host saw a response complete but
could not stream its body to us.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from .session_context import SessionContext

logger = logging.getLogger("splice-alt.fetch")


@dataclass(frozen=True)
class HttpFetchResult:
    """
    Result of an HTTP fetch operation.

    Attributes:
        ok: True if the request succeeded (2xx status)
        status: HTTP status code (0 when no response was received)
        text: Decoded response body
        headers: Response headers
        error: Error message if the request failed
        final_url: URL after redirects
    """
    ok: bool
    status: int
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    final_url: Optional[str] = None

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type") or self.headers.get("Content-Type")


async def fetch_text(
    ctx: Optional[SessionContext],
    url: str,
    timeout_s: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
) -> HttpFetchResult:
    """
    GET ``url`` using cookies/headers from ``ctx`` when available.

    Args:
        ctx: Session captured from the browser, or None for an anonymous request
        url: Absolute URL to fetch
        timeout_s: Request timeout in seconds
        client: Optional shared client (tests pass one with a mock transport)

    Returns:
        HttpFetchResult; never raises for network or HTTP errors
    """
    headers = ctx.request_headers() if ctx else {}

    try:
        if client is not None:
            response = await client.get(url, headers=headers, timeout=timeout_s, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True) as own_client:
                response = await own_client.get(url, headers=headers)
    except httpx.TimeoutException:
        logger.warning(f"[FETCH] Timeout after {timeout_s}s: {url}")
        return HttpFetchResult(ok=False, status=0, error=f"Request timed out after {timeout_s}s")
    except httpx.HTTPError as e:
        logger.warning(f"[FETCH] Request failed for {url}: {e}")
        return HttpFetchResult(ok=False, status=0, error=str(e))

    ok = 200 <= response.status_code < 300
    if not ok:
        logger.warning(f"[FETCH] HTTP {response.status_code}: {url}")

    return HttpFetchResult(
        ok=ok,
        status=response.status_code,
        text=response.text,
        headers=dict(response.headers),
        error=None if ok else f"HTTP {response.status_code}",
        final_url=str(response.url),
    )
