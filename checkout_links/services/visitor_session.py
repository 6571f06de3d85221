"""
Visitor attribution channels: a server-side session slot and a signed cookie.

Both carry the id of the link a shopper arrived through. The session may be
gone by the time the order completes (worker restart, cleared session); the
cookie still identifies the link then.

Cookie value format: "<link_id>.<b64url(HMAC-SHA256)>". Tampered or unsigned
values are ignored.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

SESSION_COOKIE = "jtc_session"
LINK_COOKIE = "jtc_link_id"
LINK_SLOT = "link_id"
SESSION_TTL = 48 * 3600
CLEANUP_INTERVAL = 300  # 5 minutes


# ── Server-side session slots ────────────────────────────────────────────────

class SessionStore:
    """In-process session slots with TTL, keyed by the shopper session id."""

    def __init__(self, ttl: int = SESSION_TTL, cleanup_interval: float = CLEANUP_INTERVAL):
        self.ttl = ttl
        self._data: dict[str, tuple[dict[str, Any], float]] = {}
        self._last_cleanup = time.monotonic()
        self._cleanup_interval = cleanup_interval

    def get(self, session_id: Optional[str], key: str) -> Any:
        if not session_id:
            return None
        entry = self._data.get(session_id)
        if not entry:
            return None
        slots, touched_at = entry
        if time.time() - touched_at > self.ttl:
            del self._data[session_id]
            return None
        return slots.get(key)

    def set(self, session_id: str, key: str, value: Any) -> None:
        self._maybe_cleanup()
        slots, _ = self._data.get(session_id, ({}, 0.0))
        slots[key] = value
        self._data[session_id] = (slots, time.time())

    def clear(self, session_id: Optional[str], key: str) -> None:
        if not session_id or session_id not in self._data:
            return
        slots, touched_at = self._data[session_id]
        slots.pop(key, None)
        self._data[session_id] = (slots, touched_at)

    def cleanup_expired(self) -> int:
        """Drop expired sessions. Returns count removed."""
        now = time.time()
        expired = [k for k, (_, ts) in self._data.items() if now - ts > self.ttl]
        for k in expired:
            del self._data[k]
        return len(expired)

    def _maybe_cleanup(self) -> None:
        now = time.monotonic()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        removed = self.cleanup_expired()
        if removed:
            logger.debug("Dropped %d expired shopper sessions", removed)

    def reset(self) -> None:
        self._data.clear()


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


# ── Signed link cookie ───────────────────────────────────────────────────────

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _cookie_sig(value: str, secret: str) -> str:
    mac = hmac.new(secret.encode(), f"link-cookie:{value}".encode(), hashlib.sha256).digest()
    return _b64url(mac)


def sign_link_cookie(link_id: int, secret: str) -> str:
    value = str(int(link_id))
    return f"{value}.{_cookie_sig(value, secret)}"


def read_link_cookie(raw: Optional[str], secret: str) -> Optional[int]:
    """Link id from a signed cookie value, or None if missing/tampered."""
    if not raw or "." not in raw:
        return None
    value, sig = raw.rsplit(".", 1)
    if not hmac.compare_digest(_cookie_sig(value, secret), sig):
        return None
    try:
        link_id = int(value)
    except ValueError:
        return None
    return link_id if link_id > 0 else None


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """FastAPI dependency: one session store per process."""
    global _store
    if _store is None:
        _store = SessionStore()
    return _store
