"""
api/routes/v1/vault.py -- The signed-in customer's vault.

Routes:
  GET /api/v1/vault   -- packages and assets owned by the session user

Storage file ids never appear in the response. Each asset carries the proxy
path the browser should call next: a stream-ticket path for videos, the
material relay path for documents.
"""

from fastapi import APIRouter, Depends, Request

from api.models import VaultAssetView, VaultPackageView, VaultResponse
from auth.dependencies import get_session_user
from auth.models import User
from vault.ingest import get_vault_by_user_id
from vault.models import Asset, Package

# Auth policy:
# - GET /api/v1/vault: requires a customer session (get_session_user)
router = APIRouter()


def asset_url(asset: Asset) -> str:
    if asset.type == "VIDEO":
        return f"/api/v1/stream-ticket/{asset.id}"
    return f"/api/v1/material/{asset.id}"


def _to_package_view(package: Package) -> VaultPackageView:
    return VaultPackageView(
        id=package.id,
        title=package.title,
        class_code=package.class_code,
        class_date=package.class_date,
        class_price=package.class_price,
        created_at=package.created_at,
        assets=[
            VaultAssetView(
                id=a.id,
                title=a.title,
                kind=a.type,
                mime_type=a.mime_type,
                size_bytes=a.size_bytes,
                url=asset_url(a),
            )
            for a in package.assets
        ],
    )


@router.get("/vault", response_model=VaultResponse)
def get_vault(request: Request, user: User = Depends(get_session_user)) -> VaultResponse:
    """Return the caller's vault. 404 if the user has no vault yet."""
    view = get_vault_by_user_id(request.app.state.vault_store, user.id)
    return VaultResponse(
        email=view.owner.email,
        slug=view.owner.slug,
        packages=[_to_package_view(p) for p in view.packages],
    )
