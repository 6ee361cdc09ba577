"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in vault/models.py -- dataclasses own domain shape; stores and routes do the
work.

Timestamps on auth rows are epoch milliseconds (int) because every check
against them is an expiry comparison. Customer and vault rows use ISO 8601
strings.

Layer rule: no imports from api/, vault/, media/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered customer. email is always stored trimmed and lower-cased.

    Users are created by manual registration, CSV import, or the first
    ingestion that names their email -- never by self sign-up.
    """

    id: str
    email: str
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Session:
    """A customer browser session.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token lives only
    in the httpOnly cookie; it is never persisted or logged.
    """

    id: str
    user_id: str
    token_hash: str
    expires_at: int
    created_at: int
    last_seen_at: int


@dataclass
class AdminSession:
    """An operator session. Same storage rules as Session, keyed by admin email."""

    id: str
    admin_email: str
    token_hash: str
    expires_at: int
    created_at: int
    last_seen_at: int


@dataclass
class LoginCode:
    """A one-time email login code.

    code_hash binds the code to the address it was sent to (see
    auth.tokens.login_code_hash). consumed_at is None until the code is used;
    a consumed code can never verify again.
    """

    id: str
    user_id: str
    code_hash: str
    expires_at: int
    created_at: int
    consumed_at: int | None = None
