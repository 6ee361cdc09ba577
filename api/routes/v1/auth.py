"""
api/routes/v1/auth.py -- Customer login by emailed one-time code.

Routes:
  POST /api/v1/auth/request-code   -- email a 6-digit code to a registered user
  POST /api/v1/auth/verify-code    -- consume the code; sets session cookie
  POST /api/v1/auth/logout         -- delete the session; clears cookie

Security:
  [H2] request-code and verify-code are rate-limited per (IP, email):
       5 and 10 attempts per 15 minutes.
  [C1] codes are stored and compared only as keyed hashes.
  [M5] Cache-Control: no-store on every response from this router.
  Expired sessions and codes are pruned at the start of request-code and
  verify-code so the tables stay small without a scheduler.
  Only registered emails receive codes -- accounts are created by
  provisioning, never by login.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_REQUEST_LIMIT, LOGIN_VERIFY_LIMIT, client_ip
from api.models import EmailRequest, MessageResponse, VerifyCodeRequest
from auth.sessions import (
    clear_session_cookie,
    end_session,
    issue_login_code,
    redeem_login_code,
    session_max_age,
    set_session_cookie,
    start_session,
)
from auth.store import CredentialStore
from core.config import get_settings
from core.errors import NotFound, Unauthorized

logger = logging.getLogger("recordvault.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/request-code: public -- rate-limited per (IP, email)
# - POST /api/v1/auth/verify-code:  public -- rate-limited per (IP, email)
# - POST /api/v1/auth/logout:       public -- clearing a cookie needs no prior auth
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/request-code", response_model=MessageResponse)
def request_code(request: Request, body: EmailRequest) -> JSONResponse:
    """Send a login code to a registered email.

    Unknown emails get 404 "You are not registered." -- the product is for
    people who already booked a class, so telling them to check their email
    address is more useful than a silent success.
    """
    store: CredentialStore = request.app.state.credential_store
    store.prune_expired_auth_rows()
    request.app.state.rate_limiter.hit(f"login-request:{client_ip(request)}:{body.email}", *LOGIN_REQUEST_LIMIT)

    user = store.get_user_by_email(body.email)
    if user is None:
        raise NotFound("You are not registered.")

    code = issue_login_code(store, user)
    request.app.state.mailer.send_login_code(user.email, code)
    logger.info("Login code issued for user %s", user.id)
    return _no_store(
        JSONResponse(content=MessageResponse(message="A login code has been sent to your email.").model_dump(by_alias=True))
    )


@router.post("/auth/verify-code", response_model=MessageResponse)
def verify_code(request: Request, body: VerifyCodeRequest) -> JSONResponse:
    """Exchange a valid code for a session cookie.

    Unknown email, wrong code, expired code, and reused code all return the
    same 401 so the response does not reveal which check failed.
    """
    store: CredentialStore = request.app.state.credential_store
    store.prune_expired_auth_rows()
    request.app.state.rate_limiter.hit(f"login-verify:{client_ip(request)}:{body.email}", *LOGIN_VERIFY_LIMIT)

    user = store.get_user_by_email(body.email)
    if user is None or not redeem_login_code(store, user, body.code):
        raise Unauthorized("Invalid email or code.")

    token = start_session(store, user)
    resp = JSONResponse(content=MessageResponse(message="Signed in.").model_dump(by_alias=True))
    set_session_cookie(resp, _settings.session_cookie_name, token, session_max_age())
    logger.info("Session started for user %s", user.id)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the current session (if any) and clear the cookie."""
    end_session(request.app.state.credential_store, request.cookies.get(_settings.session_cookie_name))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_session_cookie(resp, _settings.session_cookie_name)
    return _no_store(resp)
