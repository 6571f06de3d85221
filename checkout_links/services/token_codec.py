"""
Checkout link tokens.

Two token schemes coexist:

1. Short token (current): 10 random characters from [0-9a-zA-Z]. Carries no
   data; the selection, expiry and counters live in the link row.
2. Legacy signed token: the selection travels inside the token.

   base64( base64(json_payload) + "." + hex(HMAC-SHA256(base64(json_payload))) )

   with json_payload = {"products": [...], "exp": epoch|0, "iss": issuer, "iat": epoch}.
   Legacy tokens are self-validating (signature + embedded expiry) and must
   keep resolving for as long as they are stored.

The format of a stored token is recorded in the link row; the length
heuristic (<= 20 chars means short) is only used for rows without a tag.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from config.settings import settings
from checkout_links.errors import InvalidToken, LinkExpired
from checkout_links.models.link import SelectionItem, TokenFormat

logger = logging.getLogger(__name__)

SHORT_TOKEN_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
SHORT_TOKEN_LENGTH = 10
SHORT_TOKEN_MAX_TRIES = 10
SHORT_TOKEN_MAX_LENGTH = 20  # heuristic threshold for untagged rows


# ── Token variants ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ShortToken:
    value: str


@dataclass(frozen=True)
class LegacyToken:
    value: str


Token = Union[ShortToken, LegacyToken]


@dataclass(frozen=True)
class LegacyPayload:
    """Decoded contents of a legacy signed token."""
    selection: list[SelectionItem]
    expires_at_epoch: int  # 0 = never
    issuer: str
    issued_at_epoch: int
    raw: dict


def classify_token(token: str, stored_format: Optional[TokenFormat]) -> Token:
    """Tag an inbound token with its scheme.

    The stored format wins. Untagged rows fall back to the length heuristic.
    """
    if stored_format == TokenFormat.SHORT:
        return ShortToken(token)
    if stored_format == TokenFormat.LEGACY:
        return LegacyToken(token)
    if len(token) <= SHORT_TOKEN_MAX_LENGTH:
        logger.info("Untagged token classified as short by length (len=%d)", len(token))
        return ShortToken(token)
    logger.info("Untagged token classified as legacy by length (len=%d)", len(token))
    return LegacyToken(token)


# ── Short tokens ─────────────────────────────────────────────────────────────

def _random_short_token() -> str:
    return "".join(secrets.choice(SHORT_TOKEN_ALPHABET) for _ in range(SHORT_TOKEN_LENGTH))


def _fallback_short_token() -> str:
    seed = f"{time.time()}{secrets.randbelow(2**32)}".encode()
    return hashlib.md5(seed).hexdigest()[:SHORT_TOKEN_LENGTH]


async def generate_short_token(
    exists: Callable[[str], Awaitable[bool]],
    max_tries: int = SHORT_TOKEN_MAX_TRIES,
    generator: Callable[[], str] = _random_short_token,
) -> str:
    """Generate a short token not currently present in the store.

    The existence check only makes a retry unlikely; the unique index on
    checkout_links.token is what actually guarantees uniqueness.
    """
    for _ in range(max_tries):
        token = generator()
        if not await exists(token):
            return token

    logger.warning(
        "Short token generation exhausted %d attempts; using time-derived fallback "
        "(uniqueness enforced only by the store)", max_tries,
    )
    return _fallback_short_token()


def is_valid_short_token(token: str) -> bool:
    return len(token) == SHORT_TOKEN_LENGTH and all(c in SHORT_TOKEN_ALPHABET for c in token)


# ── Legacy signed tokens ─────────────────────────────────────────────────────

def _hmac_hex(encoded: str, secret: str) -> str:
    return hmac.new(secret.encode(), encoded.encode(), hashlib.sha256).hexdigest()


def encode_legacy_token(
    selection: list[SelectionItem],
    secret: str,
    expires_at_epoch: int = 0,
    issued_at_epoch: Optional[int] = None,
    issuer: Optional[str] = None,
) -> str:
    """Mint a self-describing signed token."""
    payload = {
        "products": [item.to_wire() for item in selection],
        "exp": int(expires_at_epoch or 0),
        "iss": issuer or settings.LINK_ISSUER,
        "iat": int(issued_at_epoch if issued_at_epoch is not None else time.time()),
    }
    encoded = base64.b64encode(json.dumps(payload, separators=(",", ":")).encode()).decode()
    signature = _hmac_hex(encoded, secret)
    return base64.b64encode(f"{encoded}.{signature}".encode()).decode()


def decode_legacy_token(
    token: str,
    secret: str,
    now: Optional[float] = None,
    allow_expired: Optional[Callable[[dict, float], bool]] = None,
) -> LegacyPayload:
    """Verify and decode a legacy token.

    Raises InvalidToken for anything malformed or forged, LinkExpired when the
    embedded expiry has passed and ``allow_expired(payload, now)`` does not
    accept it.
    """
    try:
        decoded = base64.b64decode(token).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidToken("Invalid or expired checkout link.")

    parts = decoded.split(".")
    if len(parts) != 2:
        raise InvalidToken("Invalid or expired checkout link.")
    encoded, signature = parts

    expected = _hmac_hex(encoded, secret)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Legacy token signature mismatch")
        raise InvalidToken("Invalid or expired checkout link.")

    try:
        data = json.loads(base64.b64decode(encoded))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidToken("Invalid or expired checkout link.")
    if not isinstance(data, dict) or not data:
        raise InvalidToken("Invalid or expired checkout link.")

    exp = int(data.get("exp") or 0)
    current = time.time() if now is None else now
    if exp != 0 and exp < current:
        if not (allow_expired and allow_expired(data, current)):
            raise LinkExpired()

    try:
        selection = [
            SelectionItem.from_wire(p)
            for p in data.get("products") or []
            if isinstance(p, dict) and p.get("product_id", p.get("catalog_item_id"))
        ]
    except (TypeError, ValueError):
        raise InvalidToken("Invalid or expired checkout link.")

    return LegacyPayload(
        selection=selection,
        expires_at_epoch=exp,
        issuer=str(data.get("iss", "")),
        issued_at_epoch=int(data.get("iat") or 0),
        raw=data,
    )
