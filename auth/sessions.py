"""
auth/sessions.py -- Session issuance, login codes, admin credentials, and
cookie helpers.

Flow:
  Customer: request-code -> issue_login_code() stores hash("email:code") and
      returns the raw code for the mailer. verify-code -> redeem_login_code()
      consumes it, then start_session() stores hash(token) and the route sets
      the raw token as an httpOnly cookie.
  Operator: verify_admin_credentials() checks ADMIN_EMAIL / ADMIN_PASSWORD in
      constant time, then start_admin_session().

Raw tokens and codes exist only in the return values of these functions and
in the HTTP response. They are never stored or logged.

Layer rule: no imports from api/, vault/, media/, or storage/.
"""

from __future__ import annotations

from auth.models import User
from auth.store import CredentialStore, now_ms
from auth.tokens import (
    constant_time_equal,
    create_numeric_code,
    create_session_token,
    hash_with_secret,
    login_code_hash,
)
from core.config import get_settings

_settings = get_settings()

_DAY_MS = 24 * 60 * 60 * 1000

# ---------------------------------------------------------------------------
# Login codes
# ---------------------------------------------------------------------------


def issue_login_code(store: CredentialStore, user: User) -> str:
    """Create and persist a 6-digit code for user. Returns the raw code."""
    code = create_numeric_code(6)
    expires_at = now_ms() + _settings.login_code_ttl_minutes * 60 * 1000
    store.create_login_code(user.id, login_code_hash(user.email, code), expires_at)
    return code


def redeem_login_code(store: CredentialStore, user: User, code: str) -> bool:
    """Consume a code for user. False if unknown, expired, or already used."""
    return store.consume_login_code(user.id, login_code_hash(user.email, code.strip()))


# ---------------------------------------------------------------------------
# Customer sessions
# ---------------------------------------------------------------------------


def session_max_age() -> int:
    return _settings.session_ttl_days * 24 * 60 * 60


def start_session(store: CredentialStore, user: User) -> str:
    """Persist a new session for user and return the raw cookie token."""
    token = create_session_token()
    store.create_session(user.id, hash_with_secret(token), now_ms() + _settings.session_ttl_days * _DAY_MS)
    return token


def end_session(store: CredentialStore, token: str | None) -> None:
    if token:
        store.delete_session(hash_with_secret(token))


# ---------------------------------------------------------------------------
# Admin sessions
# ---------------------------------------------------------------------------


def verify_admin_credentials(email: str, password: str) -> bool:
    """Check operator credentials against ADMIN_EMAIL / ADMIN_PASSWORD.

    Both comparisons always run so response time does not reveal whether the
    email matched [C1]. An unconfigured admin account never authenticates.
    """
    if not _settings.admin_email or not _settings.admin_password:
        return False
    email_ok = constant_time_equal(email.strip().lower(), _settings.admin_email.strip().lower())
    password_ok = constant_time_equal(password, _settings.admin_password)
    return email_ok and password_ok


def admin_session_max_age() -> int:
    return _settings.admin_session_ttl_hours * 60 * 60


def start_admin_session(store: CredentialStore, admin_email: str) -> str:
    token = create_session_token()
    expires_at = now_ms() + admin_session_max_age() * 1000
    store.create_admin_session(admin_email.strip().lower(), hash_with_secret(token), expires_at)
    return token


def end_admin_session(store: CredentialStore, token: str | None) -> None:
    if token:
        store.delete_admin_session(hash_with_secret(token))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, name: str, token: str, max_age: int) -> None:
    """Write an opaque session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the stored expiry so both lapse together.
    """
    response.set_cookie(
        name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
        path="/",
    )


def clear_session_cookie(response, name: str) -> None:
    response.delete_cookie(name, path="/", httponly=True, samesite="lax", secure=_settings.secure_cookies)
