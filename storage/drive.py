"""
storage/drive.py -- Google Drive storage provider.

All Drive traffic goes through DriveClient:
  open_media()      -- GET files/<id>?alt=media, streamed, Range forwarded.
  file_metadata()   -- admin lookup of one file (id, name, mime, size, link).
  list_files()      -- admin search over non-trashed files.
  connect flow      -- build_connect_url() / exchange_connect_code() implement
                       the offline OAuth consent that yields a refresh token.

Access tokens are minted from a refresh token with authlib's OAuth2Session and
cached in-process until shortly before they expire. The refresh token comes
from app_settings (written by the admin connect flow) and falls back to
GOOGLE_OAUTH_REFRESH_TOKEN.

Security notes:
  Storage file ids and URLs never leave this module in a customer response --
  the media proxy relays bytes, not locations.

  Refresh tokens, access tokens, and authorization codes are never logged.
  Failures are logged with the exception type and HTTP status only.

  max_redirects=3 on the media session: Drive redirects alt=media downloads at
  most once or twice, and a low cap protects against redirect chains.

Layer rule: no imports from api/, vault/, or media/.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

import requests
from authlib.integrations.requests_client import OAuth2Session, OAuthError

from auth.store import CredentialStore
from core.config import Settings, now_iso
from core.errors import UpstreamFailure

logger = logging.getLogger("recordvault.drive")

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"

DRIVE_REFRESH_TOKEN_KEY = "drive_refresh_token"  # noqa: S105 -- settings key name
DRIVE_CONNECTED_EMAIL_KEY = "drive_connected_email"
DRIVE_CONNECTED_AT_KEY = "drive_connected_at"

# Refresh the cached access token this many seconds before Google expires it.
_TOKEN_EXPIRY_MARGIN = 60

_DRIVE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{10,}$")
_DRIVE_PATH_ID_RE = re.compile(r"/d/([A-Za-z0-9_-]{10,})")


def extract_drive_file_id(value: str) -> str | None:
    """Return the Drive file id in value, or None.

    Accepts a bare id, or a drive.google.com / docs.google.com URL in any of
    the common shapes:
        /file/d/<id>/view       /document/d/<id>/edit
        /open?id=<id>           /uc?id=<id>
    """
    value = (value or "").strip()
    if not value:
        return None
    if _DRIVE_ID_RE.match(value):
        return value

    try:
        parsed = urlparse(value)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    is_drive = host == "drive.google.com" or host.endswith(".drive.google.com")
    is_docs = host == "docs.google.com" or host.endswith(".docs.google.com")
    if not parsed.scheme or not (is_drive or is_docs):
        return None

    path_match = _DRIVE_PATH_ID_RE.search(parsed.path)
    if path_match:
        return path_match.group(1)
    query_id = (parse_qs(parsed.query).get("id") or [""])[0]
    if _DRIVE_ID_RE.match(query_id):
        return query_id
    return None


@dataclass
class DriveFile:
    id: str
    title: str
    mime_type: str
    size_bytes: int | None = None
    web_view_link: str | None = None


def _to_drive_file(data: dict, fallback_id: str = "") -> DriveFile:
    file_id = data.get("id") or fallback_id
    size = data.get("size")
    return DriveFile(
        id=file_id,
        title=(data.get("name") or "").strip() or file_id,
        mime_type=(data.get("mimeType") or "").strip() or "application/octet-stream",
        size_bytes=int(size) if size and str(size).isdigit() else None,
        web_view_link=data.get("webViewLink"),
    )


class DriveClient:
    """Google Drive API client backed by a stored OAuth refresh token."""

    def __init__(self, settings: Settings, credential_store: CredentialStore) -> None:
        self._settings = settings
        self._store = credential_store
        self._session = requests.Session()
        self._session.max_redirects = 3
        self._lock = threading.Lock()
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0
        self._access_token_source: str | None = None

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def _require_client_config(self) -> None:
        if not self._settings.google_oauth_client_id or not self._settings.google_oauth_client_secret:
            raise UpstreamFailure("Google OAuth client credentials are not configured.")

    def _oauth_session(self, **kwargs) -> OAuth2Session:
        return OAuth2Session(
            client_id=self._settings.google_oauth_client_id,
            client_secret=self._settings.google_oauth_client_secret,
            **kwargs,
        )

    def _refresh_token(self) -> str:
        stored = self._store.get_setting(DRIVE_REFRESH_TOKEN_KEY)
        refresh_token = stored or self._settings.google_oauth_refresh_token
        if not refresh_token:
            raise UpstreamFailure("Google Drive is not connected. Connect Drive from the admin console.")
        return refresh_token

    def _get_access_token(self) -> str:
        self._require_client_config()
        refresh_token = self._refresh_token()
        with self._lock:
            # A newly connected refresh token invalidates the cached access token.
            if (
                self._access_token
                and self._access_token_source == refresh_token
                and time.time() < self._access_token_expires_at - _TOKEN_EXPIRY_MARGIN
            ):
                return self._access_token
            try:
                with self._oauth_session() as oauth:
                    token = oauth.refresh_token(GOOGLE_TOKEN_URL, refresh_token=refresh_token)
            except (OAuthError, requests.RequestException) as exc:
                logger.error("Drive access token refresh failed: %s", type(exc).__name__)
                raise UpstreamFailure("Google Drive token acquisition failed.") from exc
            access_token = token.get("access_token")
            if not access_token:
                raise UpstreamFailure("Google Drive token acquisition failed.")
            self._access_token = access_token
            self._access_token_source = refresh_token
            self._access_token_expires_at = float(token.get("expires_at") or time.time() + 3600)
            return access_token

    def build_connect_url(self, state: str) -> str:
        """Return the Google consent URL for an offline (refresh token) grant."""
        self._require_client_config()
        with self._oauth_session(
            scope=" ".join(self._settings.drive_scopes),
            redirect_uri=self._settings.drive_connect_redirect_uri,
        ) as oauth:
            url, _ = oauth.create_authorization_url(
                GOOGLE_AUTHORIZE_URL,
                state=state,
                access_type="offline",
                prompt="consent",
                include_granted_scopes="true",
            )
        return url

    def exchange_connect_code(self, code: str) -> tuple[str | None, str | None]:
        """Exchange an authorization code. Returns (refresh_token, account_email).

        The email is best effort: a failed userinfo call leaves it None.
        """
        self._require_client_config()
        try:
            with self._oauth_session(redirect_uri=self._settings.drive_connect_redirect_uri) as oauth:
                token = oauth.fetch_token(GOOGLE_TOKEN_URL, code=code)
        except (OAuthError, requests.RequestException) as exc:
            logger.error("Drive authorization code exchange failed: %s", type(exc).__name__)
            raise UpstreamFailure("Google Drive token exchange failed.") from exc

        email = None
        access_token = token.get("access_token")
        if access_token:
            try:
                resp = self._session.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                    timeout=10,
                )
                if resp.ok:
                    email = (resp.json().get("email") or "").strip().lower() or None
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Drive account email lookup failed: %s", type(exc).__name__)
        return token.get("refresh_token"), email

    def save_connection(self, refresh_token: str, email: str | None) -> None:
        """Persist a connected account and drop any cached access token."""
        self._store.set_settings(
            {
                DRIVE_REFRESH_TOKEN_KEY: refresh_token,
                DRIVE_CONNECTED_EMAIL_KEY: email or "",
                DRIVE_CONNECTED_AT_KEY: now_iso(),
            }
        )
        with self._lock:
            self._access_token = None
            self._access_token_expires_at = 0.0
        logger.info("Google Drive connected (%s)", email or "unknown account")

    def connection_status(self) -> dict:
        stored = self._store.get_settings_map(
            [DRIVE_REFRESH_TOKEN_KEY, DRIVE_CONNECTED_EMAIL_KEY, DRIVE_CONNECTED_AT_KEY]
        )
        if stored.get(DRIVE_REFRESH_TOKEN_KEY):
            source = "connected"
        elif self._settings.google_oauth_refresh_token:
            source = "environment"
        else:
            source = "none"
        return {
            "connected": source != "none",
            "source": source,
            "email": stored.get(DRIVE_CONNECTED_EMAIL_KEY) or None,
            "connectedAt": stored.get(DRIVE_CONNECTED_AT_KEY) or None,
            "clientConfigured": bool(
                self._settings.google_oauth_client_id and self._settings.google_oauth_client_secret
            ),
        }

    # ------------------------------------------------------------------
    # Drive API
    # ------------------------------------------------------------------

    def _get(self, url: str, params: dict | None = None, headers: dict | None = None, stream: bool = False):
        request_headers = {"Authorization": f"Bearer {self._get_access_token()}"}
        if headers:
            request_headers.update(headers)
        try:
            return self._session.get(url, params=params, headers=request_headers, stream=stream, timeout=30)
        except requests.RequestException as exc:
            logger.error("Drive request failed: %s", type(exc).__name__)
            raise UpstreamFailure() from exc

    def open_media(self, file_id: str, range_header: str | None = None) -> requests.Response:
        """Open a streamed download of file_id.

        Returns the live response (status 200 or 206). The caller must close
        it. Any other status closes the response and raises UpstreamFailure.
        """
        headers = {"Range": range_header} if range_header else None
        resp = self._get(f"{DRIVE_FILES_URL}/{file_id}", params={"alt": "media"}, headers=headers, stream=True)
        if resp.status_code not in (200, 206):
            status = resp.status_code
            resp.close()
            logger.warning("Drive media request returned HTTP %d", status)
            raise UpstreamFailure("Failed to fetch media from storage.")
        return resp

    def file_metadata(self, file_id: str) -> DriveFile:
        resp = self._get(
            f"{DRIVE_FILES_URL}/{file_id}",
            params={"fields": "id,name,mimeType,size,webViewLink", "supportsAllDrives": "true"},
        )
        if not resp.ok:
            logger.warning("Drive metadata request returned HTTP %d", resp.status_code)
            raise UpstreamFailure("Unable to fetch Google Drive file metadata.")
        return _to_drive_file(resp.json(), fallback_id=file_id)

    def list_files(
        self,
        query: str = "",
        page_token: str | None = None,
        page_size: int = 20,
    ) -> tuple[list[DriveFile], str | None]:
        """Search non-trashed files by name, newest first. Returns (files, next_page_token)."""
        q = ["trashed = false"]
        search = (query or "").strip()
        if search:
            escaped = search.replace("\\", "\\\\").replace("'", "\\'")
            q.append(f"name contains '{escaped}'")
        params = {
            "pageSize": str(max(1, min(page_size, 100))),
            "fields": "nextPageToken,files(id,name,mimeType,size,webViewLink)",
            "orderBy": "modifiedTime desc",
            "q": " and ".join(q),
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        if page_token:
            params["pageToken"] = page_token
        resp = self._get(DRIVE_FILES_URL, params=params)
        if not resp.ok:
            logger.warning("Drive list request returned HTTP %d", resp.status_code)
            raise UpstreamFailure("Unable to list Google Drive files.")
        data = resp.json()
        files = [_to_drive_file(f) for f in data.get("files") or []]
        return files, data.get("nextPageToken") or None

    def close(self) -> None:
        self._session.close()
