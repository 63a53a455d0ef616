"""
Session Context: Browser-Captured Authentication State

Lets the backend repeat a Splice API request on its own when the browser
cannot hand over the response body (no response filtering support).

The extension sends:
- Session cookies
- Request headers (authorization, client headers)
- User-Agent

SECURITY NOTES:
- Kept in memory only, never written to disk
- Replaced wholesale each time the extension sends a new context
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SessionContext:
    """
    Short-lived auth context captured from the user's Splice session.

    Attributes:
        base_url: API origin (e.g. "https://api.splice.com")
        cookies: Session cookies by name
        headers: Extra request headers
        user_agent: Browser User-Agent string
    """
    base_url: str
    cookies: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    user_agent: Optional[str] = None

    def cookie_header(self) -> str:
        """Format cookies as a Cookie header string ("k1=v1; k2=v2")."""
        return "; ".join([f"{k}={v}" for k, v in self.cookies.items() if v is not None])

    def request_headers(self) -> Dict[str, str]:
        """Headers for a replayed request: captured headers plus UA and cookies if absent."""
        hdrs = dict(self.headers or {})
        present = {k.lower() for k in hdrs}
        if self.user_agent and "user-agent" not in present:
            hdrs["User-Agent"] = self.user_agent
        if self.cookies and "cookie" not in present:
            hdrs["Cookie"] = self.cookie_header()
        return hdrs

    @staticmethod
    def from_extension_message(msg: Dict[str, Any]) -> "SessionContext":
        """
        Create SessionContext from an extension message.

        Expected message format:
        {
            "type": "SESSION_CONTEXT",
            "baseUrl": "https://api.splice.com",
            "cookies": {"name": "value", ...},
            "headers": {"Header-Name": "value", ...},
            "userAgent": "Mozilla/..."
        }
        """
        return SessionContext(
            base_url=msg.get("baseUrl", msg.get("base_url", "")),
            cookies=msg.get("cookies") or {},
            headers=msg.get("headers") or {},
            user_agent=msg.get("userAgent", msg.get("user_agent")),
        )

    def is_valid(self) -> bool:
        """True if a base URL and at least one cookie or header are present."""
        return bool(self.base_url) and bool(self.cookies or self.headers)

    def __repr__(self) -> str:
        return (
            f"SessionContext(base_url='{self.base_url}', "
            f"cookies={len(self.cookies)}, headers={len(self.headers)})"
        )
