"""
auth/tokens.py -- Secret-keyed hashing, opaque tokens, stream tokens, and
webhook signatures.

Security design decisions:
  Hashing: every persisted credential (session token, admin session token,
       login code) is stored as HMAC-SHA256(SECRET_KEY, value). An attacker
       who obtains the DB cannot reverse or replay them without also knowing
       SECRET_KEY. The hash is deterministic, so lookups are a single indexed
       equality match.

  Comparisons: constant_time_equal() wraps hmac.compare_digest so secrets are
       never compared with ==. Unequal lengths return False immediately; the
       length of a hex digest is not secret.

  Stream tokens: stateless and self-describing. The payload binds one asset,
       one user, an expiry, a nonce, and a fingerprint of the caller's user
       agent and IP. The signature is HMAC(SECRET_KEY, "stream:" + payload)
       so a stream token can never be confused with any other value signed by
       the same key. A copied URL is useless from another browser or network.
       Tokens are reusable until expiry -- a video player issues many range
       requests against the same URL.

  Webhook signatures: HMAC(WEBHOOK_SECRET, timestamp). Both the signature
       comparison and the freshness check are always evaluated before their
       results are combined, so timing does not reveal which check failed.

  SECRET_KEY / WEBHOOK_SECRET: sourced from core.config.get_settings(), which
       refuses to start in production without them [M6, M7].

Layer rule: no imports from api/, vault/, media/, or storage/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
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

from core.config import get_settings

logger = logging.getLogger("recordvault.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_STREAM_DOMAIN = "stream:"

# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def _hmac_hex(key: str, value: str) -> str:
    return hmac.new(key.encode(), value.encode(), hashlib.sha256).hexdigest()


def hash_with_secret(value: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, value) as a hex string."""
    return _hmac_hex(_settings.secret_key, value)


def constant_time_equal(a: str, b: str) -> bool:
    """Compare two strings without leaking where they first differ.

    Returns False (never raises) when lengths differ. Non-ASCII input is
    compared as UTF-8 bytes because hmac.compare_digest rejects non-ASCII str.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def create_numeric_code(length: int = 6) -> str:
    """Return a random decimal code of the given length (leading zeros kept)."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def create_session_token() -> str:
    """Return 32 random bytes as 64 hex chars. Only its hash is ever stored."""
    return secrets.token_hex(32)


def login_code_hash(email: str, code: str) -> str:
    """Hash a login code together with the normalized email it was sent to.

    Binding the email means a code intercepted for one address cannot be
    replayed against another account that happens to share the same digits.
    """
    return hash_with_secret(f"{email}:{code}")


# ---------------------------------------------------------------------------
# Stream tokens
# ---------------------------------------------------------------------------


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _fingerprint(user_agent: str, ip: str) -> str:
    return hash_with_secret(f"{user_agent}|{ip}")


def _stream_signature(payload_b64: str) -> str:
    digest = hmac.new(
        _settings.secret_key.encode(),
        (_STREAM_DOMAIN + payload_b64).encode(),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_stream_token(
    asset_id: str,
    user_id: str,
    user_agent: str,
    ip: str,
    ttl_seconds: int = 3600,
) -> str:
    """Issue a signed token scoped to one asset, one user, and one client.

    Format: b64url(json(payload)) + "." + b64url(HMAC(secret, "stream:" + payloadB64))
    Payload keys:
        a -- asset id
        u -- user id
        e -- expiry, epoch milliseconds
        n -- random nonce (10 bytes hex) so two tokens never collide
        h -- fingerprint, HMAC(secret, "ua|ip") hex
    """
    payload = {
        "a": asset_id,
        "u": user_id,
        "e": int(time.time() * 1000) + ttl_seconds * 1000,
        "n": secrets.token_hex(10),
        "h": _fingerprint(user_agent, ip),
    }
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{payload_b64}.{_stream_signature(payload_b64)}"


def verify_stream_token(
    token: str,
    asset_id: str,
    user_id: str,
    user_agent: str,
    ip: str,
    now_ms: int | None = None,
) -> bool:
    """Return True only if token is authentic, unexpired, and bound to exactly
    this asset, user, user agent, and IP.

    Malformed input of any shape returns False. The caller turns False into a
    generic 403 and never reveals which check failed.
    """
    if not token or token.count(".") != 1:
        return False
    payload_b64, signature = token.split(".", 1)
    if not payload_b64 or not signature:
        return False

    if not constant_time_equal(signature, _stream_signature(payload_b64)):
        return False

    try:
        payload = json.loads(_b64url_decode(payload_b64))
    except (binascii.Error, ValueError):
        return False
    if not isinstance(payload, dict):
        return False

    expiry = payload.get("e")
    fingerprint = payload.get("h")
    if not isinstance(expiry, int) or isinstance(expiry, bool) or not isinstance(fingerprint, str):
        return False

    now = now_ms if now_ms is not None else int(time.time() * 1000)
    if payload.get("a") != asset_id or payload.get("u") != user_id:
        return False
    if expiry <= now:
        return False
    return constant_time_equal(fingerprint, _fingerprint(user_agent, ip))


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------


def sign_webhook_timestamp(timestamp: str) -> str:
    """Return hex HMAC-SHA256(WEBHOOK_SECRET, timestamp)."""
    return _hmac_hex(_settings.webhook_secret, timestamp)


def verify_webhook_signature(
    timestamp: str | None,
    signature: str | None,
    now: float | None = None,
    tolerance: int | None = None,
) -> bool:
    """Validate X-Signature / X-Timestamp on the provisioning webhook.

    The timestamp must be integer unix seconds within tolerance of now (either
    direction). Both checks run before the result is combined.
    """
    if not timestamp or not signature:
        return False
    try:
        ts = int(timestamp.strip())
    except ValueError:
        return False

    window = tolerance if tolerance is not None else _settings.webhook_timestamp_tolerance_seconds
    current = now if now is not None else time.time()

    signature_ok = constant_time_equal(signature.strip().lower(), sign_webhook_timestamp(timestamp.strip()))
    fresh = abs(current - ts) <= window
    return signature_ok and fresh
