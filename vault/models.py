"""
vault/models.py -- Domain dataclasses for vaults, packages, assets, and the
video catalog.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; the ingestion engine and routes pass them around.

Layer rule: no imports from api/, auth/, media/, or storage/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------


@dataclass
class VaultOwner:
    """A user together with their (exactly one) vault."""

    user_id: str
    email: str
    vault_id: str
    slug: str  # 24 hex chars, public and opaque, never regenerated


@dataclass
class Asset:
    """One deliverable file inside a package.

    google_drive_file_id is the storage location. It is served only through
    the media proxy and never appears in a customer-facing response.
    """

    id: str
    package_id: str
    title: str
    type: str  # "VIDEO" | "PDF" | "ZIP"
    google_drive_file_id: str
    external_asset_id: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Package:
    id: str
    vault_id: str
    title: str
    external_request_id: str | None = None
    class_code: str | None = None
    class_date: str | None = None
    class_price: float | None = None
    created_at: str | None = None
    updated_at: str | None = None
    assets: list[Asset] = field(default_factory=list)


@dataclass
class CatalogMaterial:
    """A supporting document attached to a catalog entry.

    asset_id is the caller's id, or the synthetic "<videoId>:mat:<n>" when
    none was given. It becomes the external asset id of every vault asset
    created from this material.
    """

    title: str
    kind: str  # "PDF" | "ZIP"
    google_drive_file_id: str
    asset_id: str = ""
    mime_type: str | None = None
    size_bytes: int | None = None


@dataclass
class CatalogEntry:
    """A reusable class recording template keyed by video_id."""

    video_id: str
    class_code: str
    class_title: str
    google_drive_file_id: str
    id: str | None = None
    class_date: str | None = None
    class_price: float | None = None
    mime_type: str | None = None
    materials: list[CatalogMaterial] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class VaultView:
    owner: VaultOwner
    packages: list[Package] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Ingestion inputs and results
# ---------------------------------------------------------------------------


@dataclass
class IngestAsset:
    title: str
    kind: str
    google_drive_file_id: str
    external_asset_id: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None


@dataclass
class IngestPackage:
    """One package to reconcile into the vault of email.

    external_request_id is the idempotency key. Two ingestions with the same
    key update one package instead of creating two.
    """

    email: str
    title: str
    assets: list[IngestAsset]
    external_request_id: str | None = None
    class_code: str | None = None
    class_date: str | None = None
    class_price: float | None = None


@dataclass
class IngestResult:
    owner: VaultOwner
    package_id: str
    total_assets: int


@dataclass
class CatalogAssignment:
    """Outcome of assigning catalog videos to one email.

    success=False means at least one id was unknown; missing_video_ids lists
    them in request order and nothing was written.
    """

    success: bool
    missing_video_ids: list[str] = field(default_factory=list)
    owner: VaultOwner | None = None
    results: list[IngestResult] = field(default_factory=list)


@dataclass
class SyncResult:
    updated_packages: int = 0
    upserted_assets: int = 0
