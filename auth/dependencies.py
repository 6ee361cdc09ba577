"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two independent cookie-based identities:
  1. Customer session cookie (SESSION_COOKIE_NAME) -- set by verify-code.
  2. Admin session cookie (ADMIN_SESSION_COOKIE_NAME) -- set by admin login.

The cookie holds an opaque random token; lookups hash it first and match the
stored hash.

try_get_session_user() is the soft variant (returns None on failure).
get_session_user() wraps it and raises Unauthorized if there is no session.
require_admin() prunes expired auth rows, then resolves the admin session or
raises Unauthorized.

Layer rule: no imports from vault/, media/, or storage/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import AdminSession, User
from auth.tokens import hash_with_secret
from core.config import get_settings
from core.errors import Unauthorized

_settings = get_settings()


def try_get_session_user(request: Request) -> User | None:
    """Resolve the customer session cookie to a User, or None.

    Never raises -- callers that need a hard 401 should use get_session_user().
    """
    token = request.cookies.get(_settings.session_cookie_name)
    if not token:
        return None
    return request.app.state.credential_store.get_session_user(hash_with_secret(token))


def get_session_user(request: Request) -> User:
    """Require a customer session.

    Use as a FastAPI dependency:
        @router.get("/vault")
        def route(user: User = Depends(get_session_user)): ...
    """
    user = try_get_session_user(request)
    if user is None:
        raise Unauthorized()
    return user


def require_admin(request: Request) -> AdminSession:
    """Require an operator session. Raises Unauthorized otherwise."""
    store = request.app.state.credential_store
    store.prune_expired_auth_rows()
    token = request.cookies.get(_settings.admin_session_cookie_name)
    if not token:
        raise Unauthorized()
    admin_session = store.get_admin_session(hash_with_secret(token))
    if admin_session is None:
        raise Unauthorized()
    return admin_session
