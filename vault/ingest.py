"""
vault/ingest.py -- Idempotent reconciliation of bookings and catalog
assignments into per-customer vaults.

Every write path here is safe to repeat. The provisioning webhook retries on
timeouts, operators re-run CSV imports, and catalog edits are pushed to
packages that already exist. Repeating identical input leaves one package
and one asset per input asset; only updated_at values move.

Identity rules:
  User     -- normalized email (trimmed, lower-cased).
  Package  -- (vault, external_request_id). Packages without a request id are
              always inserted.
  Asset    -- within a package, a non-null external asset id, else the storage
              file id. When the file already sits on another row, that row
              is updated and takes over the external id.

Races between concurrent writers are resolved by the UNIQUE constraints in
db/schema.py: the losing insert raises IntegrityError, we re-read the row the
winner wrote and update it instead.

Pipeline:
  webhook payload / CSV row / admin form
  -> assign_catalog_videos_to_email() or ingest_package()
  -> upsert_user_and_vault() -> package upsert -> asset upserts
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.errors import NotFound, PayloadValidationError
from vault.models import (
    Asset,
    CatalogAssignment,
    CatalogEntry,
    CatalogMaterial,
    IngestAsset,
    IngestPackage,
    IngestResult,
    SyncResult,
    VaultOwner,
    VaultView,
)
from vault.store import VaultStore

logger = logging.getLogger("recordvault.ingest")

DEFAULT_VIDEO_MIME = "video/mp4"
MAX_CATALOG_PAGE = 100


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def dedupe_ids(values: list[str]) -> list[str]:
    """Trim, drop empties, and remove duplicates keeping first occurrence order."""
    seen: dict[str, None] = {}
    for value in values:
        cleaned = (value or "").strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Users + vaults
# ---------------------------------------------------------------------------


def upsert_user_and_vault(store: VaultStore, email: str) -> VaultOwner:
    """Return the owner for email, creating user and vault if needed.

    Existing identifiers are returned unchanged. The slug is never
    regenerated.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise PayloadValidationError("Email is required.")

    owner = store.get_owner_by_email(normalized)
    if owner is not None:
        return owner
    try:
        owner = store.create_owner(normalized)
    except IntegrityError:
        # A concurrent request created the user or vault first.
        owner = store.get_owner_by_email(normalized)
        if owner is None:
            raise
        return owner
    logger.info("Created vault %s for %s", owner.slug, normalized)
    return owner


def get_vault_by_email(store: VaultStore, email: str) -> Optional[VaultOwner]:
    return store.get_owner_by_email(normalize_email(email))


def get_vault_by_user_id(store: VaultStore, user_id: str) -> VaultView:
    """Return the caller's vault with packages and assets. NotFound if absent."""
    owner = store.get_owner_by_user_id(user_id)
    if owner is None:
        raise NotFound("Vault not found.")
    return VaultView(owner=owner, packages=store.list_packages(owner.vault_id))


def find_asset_for_user(store: VaultStore, asset_id: str, user_id: str) -> Asset:
    """Return the asset if user_id owns it. NotFound otherwise, including when
    it exists in someone else's vault."""
    asset = store.find_asset_for_user(asset_id, user_id)
    if asset is None:
        raise NotFound("Asset not found.")
    return asset


# ---------------------------------------------------------------------------
# Package + asset upserts
# ---------------------------------------------------------------------------


def _upsert_asset(store: VaultStore, package_id: str, asset: IngestAsset) -> str:
    asset_id = store.find_asset_id(package_id, asset.google_drive_file_id, asset.external_asset_id)
    if asset_id is not None:
        file_owner = store.find_asset_id_by_file(package_id, asset.google_drive_file_id)
        if file_owner is not None and file_owner != asset_id:
            # The file now sits under a different external id (e.g. materials
            # reordered). The row holding the file takes over the external id.
            store.release_external_asset_id(asset_id)
            asset_id = file_owner
        store.update_asset(asset_id, asset)
        return asset_id
    try:
        return store.insert_asset(package_id, asset)
    except IntegrityError:
        asset_id = store.find_asset_id(package_id, asset.google_drive_file_id, asset.external_asset_id)
        if asset_id is None:
            raise
        store.update_asset(asset_id, asset)
        return asset_id


def _upsert_package(store: VaultStore, vault_id: str, package: IngestPackage) -> str:
    fields = dict(
        title=package.title,
        class_code=package.class_code,
        class_date=package.class_date,
        class_price=package.class_price,
    )
    request_id = package.external_request_id
    if request_id:
        package_id = store.find_package_id(vault_id, request_id)
        if package_id is not None:
            store.update_package(package_id, **fields)
            return package_id
    try:
        return store.insert_package(vault_id, external_request_id=request_id, **fields)
    except IntegrityError:
        package_id = store.find_package_id(vault_id, request_id) if request_id else None
        if package_id is None:
            # The request id exists, but in another customer's vault.
            raise PayloadValidationError("requestId is already used by another vault.") from None
        store.update_package(package_id, **fields)
        return package_id


def ingest_package(store: VaultStore, package: IngestPackage) -> IngestResult:
    """Reconcile one package and its assets into the vault of package.email."""
    owner = upsert_user_and_vault(store, package.email)
    package_id = _upsert_package(store, owner.vault_id, package)
    for asset in package.assets:
        _upsert_asset(store, package_id, asset)
    logger.info(
        "Ingested package %s (request=%s, assets=%d) into vault %s",
        package_id,
        package.external_request_id or "-",
        len(package.assets),
        owner.slug,
    )
    return IngestResult(owner=owner, package_id=package_id, total_assets=len(package.assets))


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def catalog_package_title(entry: CatalogEntry) -> str:
    return f"{entry.class_code} - {entry.class_title}"


def catalog_assets(entry: CatalogEntry) -> list[IngestAsset]:
    """Recording first, then materials in catalog order."""
    assets = [
        IngestAsset(
            title=entry.class_title,
            kind="VIDEO",
            google_drive_file_id=entry.google_drive_file_id,
            external_asset_id=f"{entry.video_id}:video",
            mime_type=entry.mime_type or DEFAULT_VIDEO_MIME,
        )
    ]
    for material in entry.materials:
        assets.append(
            IngestAsset(
                title=material.title,
                kind=material.kind,
                google_drive_file_id=material.google_drive_file_id,
                external_asset_id=material.asset_id,
                mime_type=material.mime_type,
                size_bytes=material.size_bytes,
            )
        )
    return assets


def assign_catalog_videos_to_email(
    store: VaultStore,
    email: str,
    video_ids: list[str],
    request_id: Optional[str] = None,
) -> CatalogAssignment:
    """Give email one package per catalog video.

    Phase 1 resolves every id. If any is unknown, returns success=False with
    the missing ids and writes nothing. Phase 2 ingests one package per entry
    under request id "<request_id or 'catalog'>:<email>:<videoId>", so
    assigning the same video twice updates the existing package.
    """
    requested = dedupe_ids(video_ids)
    if not requested:
        raise PayloadValidationError("At least one videoId is required.")

    entries = store.get_catalog_entries(requested)
    missing = [video_id for video_id in requested if video_id not in entries]
    if missing:
        logger.info("Catalog assignment rejected, unknown video ids: %s", ", ".join(missing))
        return CatalogAssignment(success=False, missing_video_ids=missing)

    owner = upsert_user_and_vault(store, email)
    prefix = request_id or "catalog"
    results: list[IngestResult] = []
    for video_id in requested:
        entry = entries[video_id]
        results.append(
            ingest_package(
                store,
                IngestPackage(
                    email=owner.email,
                    title=catalog_package_title(entry),
                    assets=catalog_assets(entry),
                    external_request_id=f"{prefix}:{owner.email}:{video_id}",
                    class_code=entry.class_code,
                    class_date=entry.class_date,
                    class_price=entry.class_price,
                ),
            )
        )
    return CatalogAssignment(success=True, owner=owner, results=results)


def sync_catalog_entry_to_existing_packages(store: VaultStore, video_id: str) -> SyncResult:
    """Push the current catalog entry to every package created from it.

    Assets are upserted, never deleted -- a material removed from the catalog
    stays in vaults that already received it.
    """
    entry = store.get_catalog_entry(video_id.strip())
    if entry is None:
        raise NotFound("Catalog entry not found.")

    assets = catalog_assets(entry)
    result = SyncResult()
    for package in store.packages_for_video(entry.video_id):
        store.update_package(
            package.id,
            title=catalog_package_title(entry),
            class_code=entry.class_code,
            class_date=entry.class_date,
            class_price=entry.class_price,
        )
        for asset in assets:
            _upsert_asset(store, package.id, asset)
        result.updated_packages += 1
        result.upserted_assets += len(assets)
    logger.info(
        "Synced catalog %s: %d packages, %d assets",
        entry.video_id,
        result.updated_packages,
        result.upserted_assets,
    )
    return result


def upsert_catalog_video_entry(store: VaultStore, entry: CatalogEntry) -> CatalogEntry:
    """Create or replace a catalog entry keyed by its trimmed video_id.

    Materials are replaced as a whole. A material without an id gets
    "<videoId>:mat:<n>" (n is its 1-based position).
    """
    video_id = (entry.video_id or "").strip()
    errors: dict[str, str] = {}
    if not video_id:
        errors["videoId"] = "required"
    if not (entry.class_code or "").strip():
        errors["classCode"] = "required"
    if not (entry.class_title or "").strip():
        errors["classTitle"] = "required"
    if not (entry.google_drive_file_id or "").strip():
        errors["googleDriveFileId"] = "required"
    if errors:
        raise PayloadValidationError("Catalog entry is incomplete.", details=errors)

    materials = [
        CatalogMaterial(
            asset_id=(material.asset_id or "").strip() or f"{video_id}:mat:{position}",
            title=material.title.strip(),
            kind=material.kind,
            google_drive_file_id=material.google_drive_file_id.strip(),
            mime_type=material.mime_type,
            size_bytes=material.size_bytes,
        )
        for position, material in enumerate(entry.materials, start=1)
    ]
    normalized = CatalogEntry(
        video_id=video_id,
        class_code=entry.class_code.strip(),
        class_title=entry.class_title.strip(),
        google_drive_file_id=entry.google_drive_file_id.strip(),
        class_date=entry.class_date,
        class_price=entry.class_price,
        mime_type=entry.mime_type,
        materials=materials,
    )
    try:
        return store.save_catalog_entry(normalized)
    except IntegrityError:
        # Lost an insert race on video_id; the row exists now, so update it.
        return store.save_catalog_entry(normalized)


def list_catalog_entries(store: VaultStore, limit: int = MAX_CATALOG_PAGE) -> list[CatalogEntry]:
    return store.list_catalog_entries(max(1, min(limit, MAX_CATALOG_PAGE)))
