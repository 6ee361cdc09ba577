"""
vault/store.py -- SQLAlchemy Core persistence layer for vaults, packages,
assets, and the video catalog.

Pattern: Repository + Data Mapper. VaultStore is the repository; the
_row_to_* functions are the mappers. The ingestion engine (vault/ingest.py)
holds the reconciliation rules and calls into this class for every read and
write. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL. The suffix
match in packages_for_video() escapes LIKE wildcards in the video id.

Race handling: inserts that collide with a UNIQUE constraint raise
sqlalchemy.exc.IntegrityError to the caller. The ingestion engine treats that
as "a concurrent writer got there first" and re-reads. The one exception is
create_owner(), which must insert a user and a vault atomically and therefore
runs in a single transaction.

Layer rule: no imports from api/, auth/, media/, or storage/.
"""

from __future__ import annotations

import secrets
import uuid

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from core.config import now_iso
from db.schema import catalog_materials, users, vault_assets, vault_packages, vaults, video_catalog
from vault.models import Asset, CatalogEntry, CatalogMaterial, IngestAsset, Package, VaultOwner


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_slug() -> str:
    return secrets.token_hex(12)


_OWNER_COLUMNS = (
    users.c.id.label("user_id"),
    users.c.email,
    vaults.c.id.label("vault_id"),
    vaults.c.slug,
)

# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VaultStore:
    """Repository for users' vaults, their packages and assets, and catalog
    templates.

    Usage:
        store = VaultStore(engine)
        owner = store.get_owner_by_email("a@example.com")
        packages = store.list_packages(owner.vault_id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Users + vaults
    # ------------------------------------------------------------------

    def get_owner_by_email(self, email: str) -> VaultOwner | None:
        stmt = (
            select(*_OWNER_COLUMNS)
            .select_from(users.join(vaults, vaults.c.user_id == users.c.id))
            .where(users.c.email == email)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_owner(row) if row is not None else None

    def get_owner_by_user_id(self, user_id: str) -> VaultOwner | None:
        stmt = (
            select(*_OWNER_COLUMNS)
            .select_from(users.join(vaults, vaults.c.user_id == users.c.id))
            .where(users.c.id == user_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_owner(row) if row is not None else None

    def create_owner(self, email: str) -> VaultOwner:
        """Insert the user (if absent) and its vault in one transaction.

        A user row without a vault (left by an older install) gets a vault
        attached here. Raises IntegrityError when a concurrent request created
        either row first; nothing from this call is kept in that case.
        """
        stamp = now_iso()
        with self.engine.begin() as conn:
            user_row = conn.execute(select(users.c.id).where(users.c.email == email)).fetchone()
            if user_row is None:
                user_id = _new_id()
                conn.execute(users.insert().values(id=user_id, email=email, created_at=stamp, updated_at=stamp))
            else:
                user_id = user_row.id
            vault_id = _new_id()
            slug = _new_slug()
            conn.execute(
                vaults.insert().values(id=vault_id, user_id=user_id, slug=slug, created_at=stamp, updated_at=stamp)
            )
        return VaultOwner(user_id=user_id, email=email, vault_id=vault_id, slug=slug)

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def find_package_id(self, vault_id: str, external_request_id: str) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(vault_packages.c.id).where(
                    and_(
                        vault_packages.c.vault_id == vault_id,
                        vault_packages.c.external_request_id == external_request_id,
                    )
                )
            ).fetchone()
        return row.id if row is not None else None

    def insert_package(
        self,
        vault_id: str,
        title: str,
        external_request_id: str | None,
        class_code: str | None,
        class_date: str | None,
        class_price: float | None,
    ) -> str:
        """Insert a package and return its id.

        Raises IntegrityError if external_request_id already exists anywhere.
        """
        package_id = _new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                vault_packages.insert().values(
                    id=package_id,
                    vault_id=vault_id,
                    external_request_id=external_request_id,
                    title=title,
                    class_code=class_code,
                    class_date=class_date,
                    class_price=class_price,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return package_id

    def update_package(
        self,
        package_id: str,
        title: str,
        class_code: str | None,
        class_date: str | None,
        class_price: float | None,
    ) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                vault_packages.update()
                .where(vault_packages.c.id == package_id)
                .values(
                    title=title,
                    class_code=class_code,
                    class_date=class_date,
                    class_price=class_price,
                    updated_at=now_iso(),
                )
            )
            conn.commit()

    def list_packages(self, vault_id: str) -> list[Package]:
        """Return every package in the vault, newest first, with assets attached."""
        with self.engine.connect() as conn:
            package_rows = conn.execute(
                vault_packages.select()
                .where(vault_packages.c.vault_id == vault_id)
                .order_by(vault_packages.c.created_at.desc())
            ).fetchall()
            packages = [_row_to_package(r) for r in package_rows]
            if not packages:
                return []
            by_id = {p.id: p for p in packages}
            asset_rows = conn.execute(
                vault_assets.select()
                .where(vault_assets.c.package_id.in_(list(by_id)))
                .order_by(vault_assets.c.created_at)
            ).fetchall()
        for row in asset_rows:
            by_id[row.package_id].assets.append(_row_to_asset(row))
        return packages

    def packages_for_video(self, video_id: str) -> list[Package]:
        """Packages whose external request id ends with ":<video_id>".

        Catalog assignment builds request ids as "<prefix>:<email>:<videoId>",
        so this finds every package ever created from that catalog entry.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                vault_packages.select().where(
                    vault_packages.c.external_request_id.endswith(f":{video_id}", autoescape=True)
                )
            ).fetchall()
        return [_row_to_package(r) for r in rows]

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def _asset_id_where(self, package_id: str, clause) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(vault_assets.c.id).where(and_(vault_assets.c.package_id == package_id, clause)).limit(1)
            ).fetchone()
        return row.id if row is not None else None

    def find_asset_id(self, package_id: str, google_drive_file_id: str, external_asset_id: str | None) -> str | None:
        """Match an asset within a package by external asset id when one is
        given, else by storage file id."""
        if external_asset_id:
            asset_id = self._asset_id_where(package_id, vault_assets.c.external_asset_id == external_asset_id)
            if asset_id is not None:
                return asset_id
        return self.find_asset_id_by_file(package_id, google_drive_file_id)

    def find_asset_id_by_file(self, package_id: str, google_drive_file_id: str) -> str | None:
        return self._asset_id_where(package_id, vault_assets.c.google_drive_file_id == google_drive_file_id)

    def release_external_asset_id(self, asset_id: str) -> None:
        """Clear an asset's external id so another row in the package can take it."""
        with self.engine.connect() as conn:
            conn.execute(
                vault_assets.update()
                .where(vault_assets.c.id == asset_id)
                .values(external_asset_id=None, updated_at=now_iso())
            )
            conn.commit()

    def insert_asset(self, package_id: str, asset: IngestAsset) -> str:
        """Insert an asset and return its id. Raises IntegrityError on a dedup-key clash."""
        asset_id = _new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                vault_assets.insert().values(
                    id=asset_id,
                    package_id=package_id,
                    external_asset_id=asset.external_asset_id,
                    title=asset.title,
                    type=asset.kind,
                    google_drive_file_id=asset.google_drive_file_id,
                    mime_type=asset.mime_type,
                    size_bytes=asset.size_bytes,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return asset_id

    def update_asset(self, asset_id: str, asset: IngestAsset) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                vault_assets.update()
                .where(vault_assets.c.id == asset_id)
                .values(
                    title=asset.title,
                    type=asset.kind,
                    google_drive_file_id=asset.google_drive_file_id,
                    external_asset_id=asset.external_asset_id,
                    mime_type=asset.mime_type,
                    size_bytes=asset.size_bytes,
                    updated_at=now_iso(),
                )
            )
            conn.commit()

    def find_asset_for_user(self, asset_id: str, user_id: str) -> Asset | None:
        """Return the asset only if it sits in a package in user_id's vault.

        Absent and owned-by-someone-else both return None, so callers cannot
        tell the two apart [IDOR].
        """
        stmt = (
            select(vault_assets)
            .select_from(
                vault_assets.join(vault_packages, vault_packages.c.id == vault_assets.c.package_id).join(
                    vaults, vaults.c.id == vault_packages.c.vault_id
                )
            )
            .where(and_(vault_assets.c.id == asset_id, vaults.c.user_id == user_id))
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_asset(row) if row is not None else None

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_catalog_entries(self, video_ids: list[str]) -> dict[str, CatalogEntry]:
        """Return {video_id: entry} for the ids that exist, materials included."""
        if not video_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(video_catalog.select().where(video_catalog.c.video_id.in_(video_ids))).fetchall()
            entries = [_row_to_catalog_entry(r) for r in rows]
            self._attach_materials(conn, entries)
        return {e.video_id: e for e in entries}

    def get_catalog_entry(self, video_id: str) -> CatalogEntry | None:
        return self.get_catalog_entries([video_id]).get(video_id)

    def list_catalog_entries(self, limit: int = 100) -> list[CatalogEntry]:
        """Most recently edited first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                video_catalog.select().order_by(video_catalog.c.updated_at.desc()).limit(limit)
            ).fetchall()
            entries = [_row_to_catalog_entry(r) for r in rows]
            self._attach_materials(conn, entries)
        return entries

    def save_catalog_entry(self, entry: CatalogEntry) -> CatalogEntry:
        """Insert or update the entry keyed by video_id and replace its materials.

        Runs in one transaction, so readers never see a half-replaced material
        list. Materials are renumbered 1..n in the given order. Raises
        IntegrityError when a concurrent insert of the same video_id won.
        """
        stamp = now_iso()
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(video_catalog.c.id, video_catalog.c.created_at).where(video_catalog.c.video_id == entry.video_id)
            ).fetchone()
            fields = dict(
                class_code=entry.class_code,
                class_title=entry.class_title,
                class_date=entry.class_date,
                class_price=entry.class_price,
                google_drive_file_id=entry.google_drive_file_id,
                mime_type=entry.mime_type,
                updated_at=stamp,
            )
            if existing is None:
                catalog_id = _new_id()
                created_at = stamp
                conn.execute(
                    video_catalog.insert().values(id=catalog_id, video_id=entry.video_id, created_at=stamp, **fields)
                )
            else:
                catalog_id = existing.id
                created_at = existing.created_at
                conn.execute(video_catalog.update().where(video_catalog.c.id == catalog_id).values(**fields))
                conn.execute(catalog_materials.delete().where(catalog_materials.c.catalog_id == catalog_id))

            for position, material in enumerate(entry.materials, start=1):
                conn.execute(
                    catalog_materials.insert().values(
                        catalog_id=catalog_id,
                        position=position,
                        asset_id=material.asset_id,
                        title=material.title,
                        kind=material.kind,
                        google_drive_file_id=material.google_drive_file_id,
                        mime_type=material.mime_type,
                        size_bytes=material.size_bytes,
                    )
                )

        entry.id = catalog_id
        entry.created_at = created_at
        entry.updated_at = stamp
        return entry

    def _attach_materials(self, conn, entries: list[CatalogEntry]) -> None:
        if not entries:
            return
        by_id = {e.id: e for e in entries}
        rows = conn.execute(
            catalog_materials.select()
            .where(catalog_materials.c.catalog_id.in_(list(by_id)))
            .order_by(catalog_materials.c.catalog_id, catalog_materials.c.position)
        ).fetchall()
        for row in rows:
            by_id[row.catalog_id].materials.append(_row_to_material(row))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_owner(row) -> VaultOwner:
    return VaultOwner(user_id=row.user_id, email=row.email, vault_id=row.vault_id, slug=row.slug)


def _row_to_package(row) -> Package:
    return Package(
        id=row.id,
        vault_id=row.vault_id,
        title=row.title,
        external_request_id=row.external_request_id,
        class_code=row.class_code,
        class_date=row.class_date,
        class_price=row.class_price,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_asset(row) -> Asset:
    return Asset(
        id=row.id,
        package_id=row.package_id,
        title=row.title,
        type=row.type,
        google_drive_file_id=row.google_drive_file_id,
        external_asset_id=row.external_asset_id,
        mime_type=row.mime_type,
        size_bytes=row.size_bytes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_catalog_entry(row) -> CatalogEntry:
    return CatalogEntry(
        id=row.id,
        video_id=row.video_id,
        class_code=row.class_code,
        class_title=row.class_title,
        class_date=row.class_date,
        class_price=row.class_price,
        google_drive_file_id=row.google_drive_file_id,
        mime_type=row.mime_type,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_material(row) -> CatalogMaterial:
    return CatalogMaterial(
        asset_id=row.asset_id,
        title=row.title,
        kind=row.kind,
        google_drive_file_id=row.google_drive_file_id,
        mime_type=row.mime_type,
        size_bytes=row.size_bytes,
    )
