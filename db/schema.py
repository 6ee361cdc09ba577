"""
db/schema.py -- SQLAlchemy Core schema shared by every RecordVault store.

Users, vaults, packages, assets, the catalog, and the auth tables live in a
single database because ownership checks join across them (asset -> package
-> vault -> user). Both CredentialStore and VaultStore receive the same
Engine.

Schema creation is an explicit step: init_schema() runs once in the API
lifespan (and via `python main.py init-db`) before any request is served.
metadata.create_all() only creates missing tables, so repeated runs are
harmless.

Uniqueness that the ingestion engine relies on is enforced here, not in code:
  - vaults.user_id                                  one vault per user
  - vault_packages.external_request_id              idempotency key
  - vault_assets (package_id, google_drive_file_id) asset dedup key
  - vault_assets (package_id, external_asset_id)    asset dedup key
  - video_catalog.video_id                          catalog template key
SQLite and PostgreSQL both treat NULLs as distinct in UNIQUE constraints, so
packages and assets without external ids never collide with each other.

Layer rule: no imports from api/, auth/, vault/, media/, or storage/.
"""

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

ASSET_KINDS = ("VIDEO", "PDF", "ZIP")

# ---------------------------------------------------------------------------
# Customers and vaults
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),  # stored normalized
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

vaults = Table(
    "vaults",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("slug", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

vault_packages = Table(
    "vault_packages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("vault_id", String(36), ForeignKey("vaults.id", ondelete="CASCADE"), nullable=False),
    Column("external_request_id", String(512), unique=True),
    Column("title", Text, nullable=False),
    Column("class_code", String(255)),
    Column("class_date", String(64)),
    Column("class_price", Float),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

vault_assets = Table(
    "vault_assets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("package_id", String(36), ForeignKey("vault_packages.id", ondelete="CASCADE"), nullable=False),
    Column("external_asset_id", String(512)),
    Column("title", Text, nullable=False),
    Column("type", String(8), CheckConstraint("type IN ('VIDEO', 'PDF', 'ZIP')", name="ck_vault_assets_type"), nullable=False),
    Column("google_drive_file_id", String(255), nullable=False),
    Column("mime_type", String(255)),
    Column("size_bytes", BigInteger),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("package_id", "google_drive_file_id", name="uq_vault_assets_pkg_drive"),
    UniqueConstraint("package_id", "external_asset_id", name="uq_vault_assets_pkg_external"),
)

# ---------------------------------------------------------------------------
# Catalog templates
# ---------------------------------------------------------------------------

video_catalog = Table(
    "video_catalog",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("video_id", String(255), nullable=False, unique=True),
    Column("class_code", String(255), nullable=False),
    Column("class_title", Text, nullable=False),
    Column("class_date", String(64)),
    Column("class_price", Float),
    Column("google_drive_file_id", String(255), nullable=False),
    Column("mime_type", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Ordered child collection of video_catalog. position is 1-based and matches
# the <videoId>:mat:<n> synthetic id given to materials without their own id.
catalog_materials = Table(
    "catalog_materials",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("catalog_id", String(36), ForeignKey("video_catalog.id", ondelete="CASCADE"), nullable=False),
    Column("position", Integer, nullable=False),
    Column("asset_id", String(512), nullable=False),
    Column("title", Text, nullable=False),
    Column("kind", String(8), CheckConstraint("kind IN ('PDF', 'ZIP')", name="ck_catalog_materials_kind"), nullable=False),
    Column("google_drive_file_id", String(255), nullable=False),
    Column("mime_type", String(255)),
    Column("size_bytes", BigInteger),
    UniqueConstraint("catalog_id", "position", name="uq_catalog_materials_position"),
)

# ---------------------------------------------------------------------------
# Auth -- only secret-keyed hashes are stored, never raw tokens or codes
# ---------------------------------------------------------------------------

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", BigInteger, nullable=False),  # epoch ms
    Column("created_at", BigInteger, nullable=False),
    Column("last_seen_at", BigInteger, nullable=False),
    Index("idx_sessions_user_id", "user_id"),
    Index("idx_sessions_expires_at", "expires_at"),
)

admin_sessions = Table(
    "admin_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("admin_email", String(320), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", BigInteger, nullable=False),
    Column("created_at", BigInteger, nullable=False),
    Column("last_seen_at", BigInteger, nullable=False),
    Index("idx_admin_sessions_expires_at", "expires_at"),
)

login_codes = Table(
    "login_codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("code_hash", String(64), nullable=False),
    Column("expires_at", BigInteger, nullable=False),
    Column("consumed_at", BigInteger),  # NULL until used
    Column("created_at", BigInteger, nullable=False),
    Index("idx_login_codes_user_id_expires_at", "user_id", "expires_at"),
)

app_settings = Table(
    "app_settings",
    metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine + startup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign-key enforcement on every new SQLite connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool,
    and foreign keys are off by default.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url. SQLite URLs get thread-sharing and PRAGMAs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def init_schema(engine: Engine) -> None:
    """Create any missing tables and indexes. Safe to run on every startup."""
    metadata.create_all(engine)
