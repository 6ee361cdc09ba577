"""
api/routes/v1/admin.py -- Operator console endpoints.

Routes:
  POST /api/v1/admin/auth/login       -- ADMIN_EMAIL / ADMIN_PASSWORD; sets admin cookie
  POST /api/v1/admin/auth/logout      -- revoke admin session; clears cookie
  POST /api/v1/admin/users            -- manual register (get-or-create vault)
  POST /api/v1/admin/users/import     -- registrant CSV bulk assignment
  GET  /api/v1/admin/entries          -- list catalog entries (newest first, <= 100)
  POST /api/v1/admin/entries          -- upsert a catalog entry, then push it to
                                         every package created from it
  GET  /api/v1/admin/drive/connect    -- redirect to Google consent
  GET  /api/v1/admin/drive/callback   -- finish consent; store refresh token
  GET  /api/v1/admin/drive/status     -- connection state
  GET  /api/v1/admin/drive/file       -- metadata for one file id or Drive link
  GET  /api/v1/admin/drive/files      -- search / list files

Security:
  [H2] login is rate-limited to 10 attempts per 15 minutes per IP; manual
       register to 30 per IP and 5 per (IP, email).
  [C1] verify_admin_credentials() runs both comparisons in constant time.
  [M5] Cache-Control: no-store on login and logout.
  Drive connect: a random state value is set in a short-lived httpOnly cookie
  before redirecting to Google and compared in constant time on callback.
  The callback answers with redirects to /admin (never JSON) because the
  browser arrives there from Google, not from the console's fetch calls.
"""

import logging
import secrets
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import (
    ADMIN_LOGIN_LIMIT,
    ADMIN_REGISTER_EMAIL_LIMIT,
    ADMIN_REGISTER_IP_LIMIT,
    client_ip,
)
from api.models import (
    AdminLoginRequest,
    CatalogEntryListResponse,
    CatalogEntryRequest,
    CatalogEntrySaveResponse,
    CatalogEntryView,
    CatalogMaterialView,
    DriveFileListResponse,
    DriveFileView,
    DriveStatusResponse,
    EmailRequest,
    ImportErrorRow,
    MessageResponse,
    RegisterResponse,
    RegistrantImportRequest,
    RegistrantImportResponse,
)
from auth.dependencies import require_admin
from auth.models import AdminSession
from auth.sessions import (
    admin_session_max_age,
    clear_session_cookie,
    end_admin_session,
    set_session_cookie,
    start_admin_session,
    verify_admin_credentials,
)
from auth.tokens import constant_time_equal
from core.config import get_settings
from core.errors import PayloadValidationError, Unauthorized, UpstreamFailure
from storage.drive import DriveClient, DriveFile, extract_drive_file_id
from vault.ingest import (
    get_vault_by_email,
    list_catalog_entries,
    sync_catalog_entry_to_existing_packages,
    upsert_catalog_video_entry,
    upsert_user_and_vault,
)
from vault.models import CatalogEntry, CatalogMaterial
from vault.registrants import import_registrants

logger = logging.getLogger("recordvault.api.admin")

_settings = get_settings()

DRIVE_CONNECT_STATE_COOKIE = "rv_drive_connect_state"
DRIVE_CONNECT_STATE_MAX_AGE = 10 * 60

# Auth policy:
# - POST /api/v1/admin/auth/login:  public -- rate-limited per IP
# - POST /api/v1/admin/auth/logout: public -- revokes whatever admin cookie is presented
# - everything else:                requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Admin session
# ---------------------------------------------------------------------------


@router.post("/admin/auth/login", response_model=MessageResponse)
def admin_login(request: Request, body: AdminLoginRequest) -> JSONResponse:
    """Start an operator session. Wrong email and wrong password look the same."""
    request.app.state.rate_limiter.hit(f"admin-login:{client_ip(request)}", *ADMIN_LOGIN_LIMIT)
    if not verify_admin_credentials(body.email, body.password):
        logger.warning("Admin login failed from %s", client_ip(request))
        raise Unauthorized("Invalid admin credentials.")

    token = start_admin_session(request.app.state.credential_store, body.email)
    resp = JSONResponse(content=MessageResponse(message="Signed in.").model_dump(by_alias=True))
    set_session_cookie(resp, _settings.admin_session_cookie_name, token, admin_session_max_age())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    logger.info("Admin session started")
    return resp


@router.post("/admin/auth/logout", response_model=MessageResponse)
def admin_logout(request: Request) -> JSONResponse:
    end_admin_session(request.app.state.credential_store, request.cookies.get(_settings.admin_session_cookie_name))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(by_alias=True))
    clear_session_cookie(resp, _settings.admin_session_cookie_name)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.post("/admin/users", response_model=RegisterResponse)
def register_user(
    request: Request,
    body: EmailRequest,
    admin: AdminSession = Depends(require_admin),
) -> RegisterResponse:
    """Get-or-create the user and vault for an email. Safe to repeat."""
    limiter = request.app.state.rate_limiter
    ip = client_ip(request)
    limiter.hit(f"admin-register:{ip}", *ADMIN_REGISTER_IP_LIMIT)
    limiter.hit(f"admin-register:{ip}:{body.email}", *ADMIN_REGISTER_EMAIL_LIMIT)

    store = request.app.state.vault_store
    existing = get_vault_by_email(store, body.email)
    owner = upsert_user_and_vault(store, body.email)
    logger.info("Admin %s registered %s (created=%s)", admin.admin_email, owner.email, existing is None)
    return RegisterResponse(
        email=owner.email,
        vault_slug=owner.slug,
        created=existing is None,
        message="User already registered." if existing else "User registered successfully.",
    )


@router.post("/admin/users/import", response_model=RegistrantImportResponse)
def import_users(
    request: Request,
    body: RegistrantImportRequest,
    admin: AdminSession = Depends(require_admin),
) -> RegistrantImportResponse:
    """Assign catalog classes to every registrant row in a CSV export.

    Failures for individual emails are reported, not raised; only an empty or
    header-only CSV fails the request.
    """
    report = import_registrants(request.app.state.vault_store, body.csv)
    return RegistrantImportResponse(
        total_rows=report.total_rows,
        valid_rows=report.valid_rows,
        unique_emails=report.unique_emails,
        upserted_users=report.upserted_users,
        provisioned_users=report.provisioned_users,
        provisioned_class_codes=report.provisioned_class_codes,
        skipped_invalid=report.skipped_invalid,
        failed_users=report.failed_users,
        errors=[ImportErrorRow(**e) for e in report.errors],
    )


# ---------------------------------------------------------------------------
# Catalog entries
# ---------------------------------------------------------------------------


def _to_entry_view(entry: CatalogEntry) -> CatalogEntryView:
    return CatalogEntryView(
        video_id=entry.video_id,
        class_code=entry.class_code,
        class_title=entry.class_title,
        class_date=entry.class_date,
        class_price=entry.class_price,
        google_drive_file_id=entry.google_drive_file_id,
        mime_type=entry.mime_type,
        materials=[
            CatalogMaterialView(
                asset_id=m.asset_id,
                title=m.title,
                kind=m.kind,
                google_drive_file_id=m.google_drive_file_id,
                mime_type=m.mime_type,
                size_bytes=m.size_bytes,
            )
            for m in entry.materials
        ],
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


@router.get("/admin/entries", response_model=CatalogEntryListResponse)
def list_entries(
    request: Request,
    limit: int = Query(default=100, ge=1, le=100),
    admin: AdminSession = Depends(require_admin),
) -> CatalogEntryListResponse:
    entries = list_catalog_entries(request.app.state.vault_store, limit)
    return CatalogEntryListResponse(items=[_to_entry_view(e) for e in entries])


@router.post("/admin/entries", response_model=CatalogEntrySaveResponse)
def save_entry(
    request: Request,
    body: CatalogEntryRequest,
    admin: AdminSession = Depends(require_admin),
) -> CatalogEntrySaveResponse:
    """Create or replace a catalog entry, then update packages already built from it."""
    store = request.app.state.vault_store
    saved = upsert_catalog_video_entry(
        store,
        CatalogEntry(
            video_id=body.video_id,
            class_code=body.class_code,
            class_title=body.class_title,
            google_drive_file_id=body.recording.google_drive_file_id,
            class_date=body.class_date,
            class_price=body.class_price,
            mime_type=body.recording.mime_type,
            materials=[
                CatalogMaterial(
                    title=m.title,
                    kind=m.kind,
                    google_drive_file_id=m.google_drive_file_id,
                    asset_id=m.asset_id or "",
                    mime_type=m.mime_type,
                    size_bytes=m.size_bytes,
                )
                for m in body.materials
            ],
        ),
    )
    sync = sync_catalog_entry_to_existing_packages(store, saved.video_id)
    logger.info("Admin %s saved catalog entry %s", admin.admin_email, saved.video_id)
    return CatalogEntrySaveResponse(
        video_id=saved.video_id,
        class_code=saved.class_code,
        class_title=saved.class_title,
        updated_existing_packages=sync.updated_packages,
        upserted_assets=sync.upserted_assets,
    )


# ---------------------------------------------------------------------------
# Google Drive connection
# ---------------------------------------------------------------------------


def _admin_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{_settings.app_url.rstrip('/')}/admin?{query}", status_code=302)


@router.get("/admin/drive/connect")
def drive_connect(request: Request, admin: AdminSession = Depends(require_admin)) -> RedirectResponse:
    """Redirect the operator to Google's consent screen."""
    state = secrets.token_hex(32)
    drive: DriveClient = request.app.state.drive
    resp = RedirectResponse(drive.build_connect_url(state), status_code=302)
    resp.set_cookie(
        DRIVE_CONNECT_STATE_COOKIE,
        value=state,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=DRIVE_CONNECT_STATE_MAX_AGE,
        path="/",
    )
    return resp


@router.get("/admin/drive/callback")
def drive_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """Finish the consent flow. Every outcome is a redirect back to /admin."""
    if error:
        return _admin_redirect(f"drive=error&reason={quote(error)}")
    try:
        require_admin(request)
    except Unauthorized:
        return RedirectResponse(f"{_settings.app_url.rstrip('/')}/admin/login", status_code=302)

    expected = request.cookies.get(DRIVE_CONNECT_STATE_COOKIE)
    if not code or not state or not expected or not constant_time_equal(state, expected):
        resp = _admin_redirect("drive=error&reason=invalid_state")
    else:
        drive: DriveClient = request.app.state.drive
        try:
            refresh_token, email = drive.exchange_connect_code(code)
        except UpstreamFailure:
            resp = _admin_redirect("drive=error&reason=token_exchange_failed")
        else:
            if not refresh_token:
                resp = _admin_redirect("drive=error&reason=no_refresh_token")
            else:
                drive.save_connection(refresh_token, email)
                resp = _admin_redirect("drive=connected")
    resp.delete_cookie(DRIVE_CONNECT_STATE_COOKIE, path="/")
    return resp


@router.get("/admin/drive/status", response_model=DriveStatusResponse)
def drive_status(request: Request, admin: AdminSession = Depends(require_admin)) -> DriveStatusResponse:
    status = request.app.state.drive.connection_status()
    return DriveStatusResponse(
        connected=status["connected"],
        source=status["source"],
        email=status["email"],
        connected_at=status["connectedAt"],
        client_configured=status["clientConfigured"],
    )


def _to_file_view(f: DriveFile) -> DriveFileView:
    return DriveFileView(
        id=f.id,
        title=f.title,
        mime_type=f.mime_type,
        size_bytes=f.size_bytes,
        web_view_link=f.web_view_link,
    )


@router.get("/admin/drive/file", response_model=DriveFileView)
def drive_file(
    request: Request,
    value: str = Query(default="", max_length=2048),
    admin: AdminSession = Depends(require_admin),
) -> DriveFileView:
    """Look up one file by id or by any Drive / Docs link shape."""
    file_id = extract_drive_file_id(value)
    if not file_id:
        raise PayloadValidationError("Provide a Google Drive file id or link.")
    return _to_file_view(request.app.state.drive.file_metadata(file_id))


@router.get("/admin/drive/files", response_model=DriveFileListResponse)
def drive_files(
    request: Request,
    q: str = Query(default="", max_length=200),
    page_token: str | None = Query(default=None, alias="pageToken", max_length=1024),
    page_size: int = Query(default=20, alias="pageSize", ge=1, le=100),
    admin: AdminSession = Depends(require_admin),
) -> DriveFileListResponse:
    files, next_page_token = request.app.state.drive.list_files(q, page_token, page_size)
    return DriveFileListResponse(files=[_to_file_view(f) for f in files], next_page_token=next_page_token)
