"""
tests/conftest.py -- Shared test fixtures for RecordVault tests.

This module provides:
  - make_engine(): an isolated named shared-memory SQLite engine with schema
  - vault_store / credential_store: stores over one fresh engine per test
  - FakeDrive / FakeMailer: in-process stand-ins for Google Drive and SMTP
  - api: an ApiHarness (TestClient + stores + fakes) whose patched lifespan wires the above into
    app.state, one fresh database and rate limiter per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be primed before any core/auth import: get_settings() is
cached and read at import time by several modules.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any core/auth import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("ADMIN_PASSWORD", "correct-horse-battery")
os.environ.setdefault("APP_URL", "http://testserver")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import LimitsCounterStore, RateLimiter
from api.main import app
from auth.store import CredentialStore
from core.errors import UpstreamFailure
from db.schema import create_db_engine, init_schema
from storage.drive import DriveFile
from vault.models import CatalogEntry, CatalogMaterial
from vault.store import VaultStore

ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]
DRIVE_ID = "1AbCdEfGhIjKlMnOpQrStUv"


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


def make_engine() -> Engine:
    """Engine over a uniquely named in-memory database with all tables."""
    url = f"sqlite:///file:rv_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    engine = create_db_engine(url)
    init_schema(engine)
    return engine


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = make_engine()
    # Hold one connection open so the shared in-memory database outlives
    # pool churn for the whole test.
    keeper = eng.connect()
    yield eng
    keeper.close()
    eng.dispose()


@pytest.fixture
def vault_store(engine: Engine) -> VaultStore:
    return VaultStore(engine)


@pytest.fixture
def credential_store(engine: Engine) -> CredentialStore:
    return CredentialStore(engine)


def make_catalog_entry(video_id: str = "C101", materials: int = 1) -> CatalogEntry:
    return CatalogEntry(
        video_id=video_id,
        class_code=video_id,
        class_title=f"Class {video_id}",
        google_drive_file_id=f"{DRIVE_ID}{video_id}",
        class_date="2026-03-01",
        class_price=49.0,
        materials=[
            CatalogMaterial(
                title=f"Slides {n}",
                kind="PDF",
                google_drive_file_id=f"{DRIVE_ID}{video_id}m{n}",
            )
            for n in range(1, materials + 1)
        ],
    )


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeUpstream:
    """Mimics the parts of requests.Response the media proxy touches."""

    def __init__(self, body: bytes, status_code: int = 200, headers: dict | None = None) -> None:
        self._body = body
        self.status_code = status_code
        self.headers = headers or {}
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeDrive:
    """Serves fixed bytes for any file id and records every call."""

    body: bytes = b"0123456789"
    fail: bool = False
    opened: list[tuple[str, str | None]] = field(default_factory=list)
    upstreams: list[FakeUpstream] = field(default_factory=list)
    saved: list[tuple[str, str | None]] = field(default_factory=list)
    refresh_token: str | None = "refresh-token"

    def open_media(self, file_id: str, range_header: str | None = None) -> FakeUpstream:
        self.opened.append((file_id, range_header))
        if self.fail:
            raise UpstreamFailure("Failed to fetch media from storage.")
        if range_header == "bytes=0-3":
            upstream = FakeUpstream(
                self.body[:4],
                status_code=206,
                headers={
                    "Content-Type": "video/mp4",
                    "Content-Range": f"bytes 0-3/{len(self.body)}",
                    "Content-Length": "4",
                    "Accept-Ranges": "bytes",
                },
            )
        else:
            upstream = FakeUpstream(self.body, headers={"Content-Length": str(len(self.body))})
        self.upstreams.append(upstream)
        return upstream

    def build_connect_url(self, state: str) -> str:
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"

    def exchange_connect_code(self, code: str) -> tuple[str | None, str | None]:
        if code == "bad":
            raise UpstreamFailure("Google Drive token exchange failed.")
        return self.refresh_token, "owner@example.com"

    def save_connection(self, refresh_token: str, email: str | None) -> None:
        self.saved.append((refresh_token, email))

    def connection_status(self) -> dict:
        return {
            "connected": bool(self.saved),
            "source": "connected" if self.saved else "none",
            "email": self.saved[-1][1] if self.saved else None,
            "connectedAt": None,
            "clientConfigured": True,
        }

    def file_metadata(self, file_id: str) -> DriveFile:
        return DriveFile(id=file_id, title="lecture.mp4", mime_type="video/mp4", size_bytes=1024)

    def list_files(self, query: str = "", page_token: str | None = None, page_size: int = 20):
        files = [DriveFile(id=DRIVE_ID, title=f"{query or 'any'}.pdf", mime_type="application/pdf")]
        return files, None

    def close(self) -> None:
        pass


@dataclass
class FakeMailer:
    sent: list[tuple[str, str]] = field(default_factory=list)

    def send_login_code(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for to, code in self.sent if to == email][-1]


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    vault_store: VaultStore
    credential_store: CredentialStore
    drive: FakeDrive
    mailer: FakeMailer


def _patch_lifespan(engine: Engine, drive: FakeDrive, mailer: FakeMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine and fakes into app.state so TestClient routes see
    an isolated database and never reach Google or an SMTP server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.credential_store = CredentialStore(engine)
        app.state.vault_store = VaultStore(engine)
        app.state.drive = drive
        app.state.mailer = mailer
        app.state.rate_limiter = RateLimiter(LimitsCounterStore("memory://"))
        yield

    return test_lifespan


@pytest.fixture
def api(engine: Engine) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over a fresh database for one test.

    raise_server_exceptions=False so the generic 500 handler is exercised
    the way a real client would see it.
    """
    drive = FakeDrive()
    mailer = FakeMailer()
    app.router.lifespan_context = _patch_lifespan(engine, drive, mailer)
    with TestClient(app, base_url="http://testserver", raise_server_exceptions=False) as client:
        yield ApiHarness(
            client=client,
            vault_store=app.state.vault_store,
            credential_store=app.state.credential_store,
            drive=drive,
            mailer=mailer,
        )


def login_customer(harness: ApiHarness, email: str) -> None:
    """Run request-code + verify-code so harness.client carries a session cookie."""
    resp = harness.client.post("/api/v1/auth/request-code", json={"email": email})
    assert resp.status_code == 200, resp.text
    code = harness.mailer.last_code_for(email.strip().lower())
    resp = harness.client.post("/api/v1/auth/verify-code", json={"email": email, "code": code})
    assert resp.status_code == 200, resp.text


def login_admin(harness: ApiHarness) -> None:
    resp = harness.client.post(
        "/api/v1/admin/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert resp.status_code == 200, resp.text
