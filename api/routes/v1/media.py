"""
api/routes/v1/media.py -- Authorized media delivery.

Routes:
  GET /api/v1/stream-ticket/{asset_id}     -- issue a short-lived stream token
  GET /api/v1/stream/{asset_id}?token=...  -- range-aware video relay
  GET /api/v1/material/{asset_id}          -- PDF / ZIP relay

Security:
  Every route requires a customer session AND resolves the asset through the
  ownership join (asset -> package -> vault -> user). An asset owned by
  someone else is indistinguishable from one that does not exist (404).

  The stream token is bound to (asset, user, user agent, client IP). A copied
  <video src> URL stops working on another device, another network, or after
  the token expires. The token is checked before the asset is looked up, so a
  bad token never reveals whether the asset exists.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from starlette.responses import StreamingResponse

from api.limiter import client_ip
from api.models import StreamTicketResponse
from auth.dependencies import get_session_user
from auth.models import User
from auth.tokens import issue_stream_token, verify_stream_token
from core.config import get_settings
from core.errors import NotFound, StreamTokenRejected
from media.proxy import relay_material, relay_video
from vault.ingest import find_asset_for_user

logger = logging.getLogger("recordvault.api.media")

_settings = get_settings()

# Auth policy:
# - GET /api/v1/stream-ticket/{id}: session + ownership
# - GET /api/v1/stream/{id}:        session + stream token + ownership
# - GET /api/v1/material/{id}:      session + ownership
router = APIRouter()


def _user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


@router.get("/stream-ticket/{asset_id}", response_model=StreamTicketResponse)
def stream_ticket(
    asset_id: str,
    request: Request,
    user: User = Depends(get_session_user),
) -> StreamTicketResponse:
    """Return a proxy URL carrying a token for one owned VIDEO asset."""
    asset = find_asset_for_user(request.app.state.vault_store, asset_id, user.id)
    if asset.type != "VIDEO":
        raise NotFound()
    ttl = _settings.stream_token_ttl_seconds
    token = issue_stream_token(asset.id, user.id, _user_agent(request), client_ip(request), ttl_seconds=ttl)
    return StreamTicketResponse(stream_url=f"/api/v1/stream/{asset.id}?token={token}", expires_in_seconds=ttl)


@router.get("/stream/{asset_id}")
def stream_video(
    asset_id: str,
    request: Request,
    token: str = Query(default=""),
    user: User = Depends(get_session_user),
) -> StreamingResponse:
    """Relay the video bytes. Range requests pass through; 206 is preserved."""
    if not verify_stream_token(token, asset_id, user.id, _user_agent(request), client_ip(request)):
        logger.info("Stream token rejected for asset %s", asset_id)
        raise StreamTokenRejected()
    asset = find_asset_for_user(request.app.state.vault_store, asset_id, user.id)
    if asset.type != "VIDEO":
        raise NotFound()
    return relay_video(request.app.state.drive, asset, request.headers.get("range"))


@router.get("/material/{asset_id}")
def download_material(
    asset_id: str,
    request: Request,
    user: User = Depends(get_session_user),
) -> StreamingResponse:
    """Relay a PDF (inline) or ZIP (attachment) the caller owns."""
    asset = find_asset_for_user(request.app.state.vault_store, asset_id, user.id)
    if asset.type == "VIDEO":
        raise NotFound()
    return relay_material(request.app.state.drive, asset)
