"""
api/routes/v1/provision.py -- Signed ingestion webhook.

Routes:
  POST /api/v1/provision   -- create or update vault packages for an email

Order of checks:
  1. Rate limit per client IP (120 / minute).
  2. Read the raw body, then verify X-Signature over X-Timestamp. The body is
     not parsed until the signature is known good.
  3. Parse JSON and resolve the payload variant (catalog_assign,
     direct_assets, booked_class -- first that validates wins).
  4. Dispatch to the ingestion engine in the thread pool.

Every write is an idempotent upsert keyed on request ids, so the automation
platform can retry a delivery without creating duplicates.

Security:
  Signature failures return the generic 401 whatever the cause (bad hex,
  wrong secret, stale timestamp, missing header).
  X-N8N-Signature / X-N8N-Timestamp are accepted as aliases for older flows.
"""

import json
import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from api.limiter import WEBHOOK_LIMIT, client_ip
from api.models import (
    BookedClassItem,
    BookedClassPayload,
    CatalogAssignPayload,
    DirectAssetsPayload,
    InboundAsset,
    ProvisionedPackage,
    ProvisionPayload,
    ProvisionResponse,
    resolve_provision_payload,
)
from auth.tokens import verify_webhook_signature
from core.config import get_settings
from core.errors import PayloadValidationError, PreconditionFailed, Unauthorized
from vault.ingest import assign_catalog_videos_to_email, dedupe_ids, ingest_package
from vault.models import IngestAsset, IngestPackage
from vault.store import VaultStore

logger = logging.getLogger("recordvault.api.provision")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/provision: webhook signature (X-Signature + X-Timestamp)
router = APIRouter()


def _header(request: Request, name: str, alias: str) -> str | None:
    return request.headers.get(name) or request.headers.get(alias)


def _to_ingest_assets(recordings: list[InboundAsset], materials: list[InboundAsset]) -> list[IngestAsset]:
    return [
        IngestAsset(
            title=a.title,
            kind=a.kind,
            google_drive_file_id=a.google_drive_file_id,
            external_asset_id=a.asset_id,
            mime_type=a.mime_type,
            size_bytes=a.size_bytes,
        )
        for a in [*recordings, *materials]
    ]


def _vault_link() -> str:
    return f"{_settings.app_url.rstrip('/')}/vault"


# ---------------------------------------------------------------------------
# Variant handlers (run in the thread pool)
# ---------------------------------------------------------------------------


def _provision_catalog(store: VaultStore, payload: CatalogAssignPayload) -> ProvisionResponse:
    assignment = assign_catalog_videos_to_email(store, payload.email, payload.all_video_ids(), payload.request_id)
    if not assignment.success:
        raise PreconditionFailed(assignment.missing_video_ids)
    packages = []
    for result, video_id in zip(assignment.results, dedupe_ids(payload.all_video_ids())):
        packages.append(
            ProvisionedPackage(video_id=video_id, package_id=result.package_id, total_assets=result.total_assets)
        )
    return ProvisionResponse(
        email=payload.email,
        vault_link=_vault_link(),
        vault_slug=assignment.owner.slug,
        total_packages=len(packages),
        packages=packages,
        message="Catalog videos assigned successfully.",
    )


def _provision_direct(store: VaultStore, payload: DirectAssetsPayload) -> ProvisionResponse:
    result = ingest_package(
        store,
        IngestPackage(
            email=payload.email,
            title=payload.package_title,
            assets=_to_ingest_assets(payload.recordings, payload.materials),
            external_request_id=payload.request_id,
        ),
    )
    return ProvisionResponse(
        email=payload.email,
        vault_link=_vault_link(),
        vault_slug=result.owner.slug,
        package_id=result.package_id,
        total_assets=result.total_assets,
        message="Vault provisioned/updated successfully.",
    )


def _booked_request_id(payload: BookedClassPayload, item: BookedClassItem) -> str:
    if item.request_id:
        return item.request_id
    info = item.class_information
    return f"{payload.request_id or 'booking'}:{info.class_code}:{info.id if info.id is not None else 'na'}"


def _provision_booked(store: VaultStore, payload: BookedClassPayload) -> ProvisionResponse:
    # Reject before writing anything: one empty entry fails the whole delivery.
    for item in payload.booked_class:
        if not item.recordings and not item.materials:
            raise PayloadValidationError(
                "Each booked_class entry must include recordings/materials with googleDriveFileId "
                "so media can be streamed.",
                details={"classCode": item.class_information.class_code, "classTitle": item.title},
            )

    packages = []
    for item in payload.booked_class:
        code = item.class_information.class_code
        result = ingest_package(
            store,
            IngestPackage(
                email=payload.email,
                title=f"{code} - {item.title}",
                assets=_to_ingest_assets(item.recordings, item.materials),
                external_request_id=_booked_request_id(payload, item),
                class_code=code,
                class_date=item.class_date,
                class_price=item.class_information.price,
            ),
        )
        packages.append(
            ProvisionedPackage(
                class_code=code,
                class_title=item.title,
                class_date=item.class_date,
                package_id=result.package_id,
                total_assets=result.total_assets,
            )
        )
    return ProvisionResponse(
        email=payload.email,
        vault_link=_vault_link(),
        total_packages=len(packages),
        packages=packages,
        message="Vault provisioned/updated successfully from booked_class payload.",
    )


def provision(store: VaultStore, payload: ProvisionPayload) -> ProvisionResponse:
    """Apply one resolved payload. Raises VaultError subclasses on failure."""
    if isinstance(payload, CatalogAssignPayload):
        return _provision_catalog(store, payload)
    if isinstance(payload, DirectAssetsPayload):
        return _provision_direct(store, payload)
    return _provision_booked(store, payload)


# ---------------------------------------------------------------------------
# Route
# ---------------------------------------------------------------------------


@router.post("/provision", response_model=ProvisionResponse, response_model_exclude_none=True)
async def provision_vault(request: Request) -> JSONResponse:
    """Verify, parse, and apply one provisioning delivery.

    async because the raw body must be read before the signature check; the
    database work itself runs in the thread pool.
    """
    await run_in_threadpool(request.app.state.rate_limiter.hit, f"webhook:{client_ip(request)}", *WEBHOOK_LIMIT)

    raw_body = await request.body()
    timestamp = _header(request, "x-timestamp", "x-n8n-timestamp")
    signature = _header(request, "x-signature", "x-n8n-signature")
    if not verify_webhook_signature(timestamp, signature):
        logger.warning("Provision webhook rejected: bad signature from %s", client_ip(request))
        raise Unauthorized("Invalid signature.")

    try:
        data = json.loads(raw_body)
    except ValueError as exc:
        raise PayloadValidationError("Invalid JSON body.") from exc

    payload = resolve_provision_payload(data)
    result = await run_in_threadpool(provision, request.app.state.vault_store, payload)
    logger.info("Provisioned %s via %s", payload.email, type(payload).__name__)
    return JSONResponse(content=result.model_dump(by_alias=True, exclude_none=True))
