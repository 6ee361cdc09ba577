"""
tests/test_api_routes.py -- Integration tests for the RecordVault HTTP surface.

These tests exercise the full stack: FastAPI routing -> cookie/session
dependencies -> rate limiter -> ingestion engine -> VaultStore/CredentialStore
-> response model serialization. Google Drive and SMTP are replaced by the
FakeDrive / FakeMailer collaborators from conftest.py.

Coverage:
  - Customer auth: request-code, verify-code, logout, rate limiting
  - Vault: listing hides storage ids and exposes proxy URLs
  - Media: stream tickets, token binding, range relay, material relay, IDOR
  - Provisioning webhook: signature, JSON, variants, idempotence, errors
  - Admin: login, register, CSV import, catalog entries, Drive connect flow
"""

from __future__ import annotations

import json
import time
from urllib.parse import parse_qs, urlparse

import pytest

from auth.tokens import sign_webhook_timestamp
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, DRIVE_ID, ApiHarness, login_admin, login_customer, make_catalog_entry
from vault.ingest import get_vault_by_email, get_vault_by_user_id, ingest_package, upsert_catalog_video_entry
from vault.models import IngestAsset, IngestPackage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _signed_headers(timestamp: int | None = None) -> dict:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    return {"X-Timestamp": ts, "X-Signature": sign_webhook_timestamp(ts), "Content-Type": "application/json"}


def _provision(harness: ApiHarness, body, headers: dict | None = None):
    raw = body if isinstance(body, (str, bytes)) else json.dumps(body)
    return harness.client.post("/api/v1/provision", content=raw, headers=headers or _signed_headers())


def _seed_package(harness: ApiHarness, email: str, request_id: str = "req-1") -> dict[str, str]:
    """Give email a package with one VIDEO and one PDF. Returns {kind: asset_id}."""
    result = ingest_package(
        harness.vault_store,
        IngestPackage(
            email=email,
            title="Workshop",
            external_request_id=request_id,
            assets=[
                IngestAsset(title="Session 1", kind="VIDEO", google_drive_file_id=f"{DRIVE_ID}v", mime_type="video/mp4"),
                IngestAsset(title="Résumé notes", kind="PDF", google_drive_file_id=f"{DRIVE_ID}p"),
            ],
        ),
    )
    package = get_vault_by_user_id(harness.vault_store, result.owner.user_id).packages[0]
    return {a.type: a.id for a in package.assets}


def _error(resp) -> dict:
    return resp.json()["error"]


# ---------------------------------------------------------------------------
# Customer auth
# ---------------------------------------------------------------------------


class TestCustomerAuth:
    def test_unregistered_email_gets_404(self, api: ApiHarness) -> None:
        resp = api.client.post("/api/v1/auth/request-code", json={"email": "stranger@example.com"})
        assert resp.status_code == 404
        assert _error(resp)["message"] == "You are not registered."
        assert api.mailer.sent == []

    def test_request_code_sends_mail(self, api: ApiHarness) -> None:
        _seed_package(api, "learner@example.com")
        resp = api.client.post("/api/v1/auth/request-code", json={"email": " Learner@Example.com "})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["success"] is True
        assert api.mailer.sent[0][0] == "learner@example.com"

    def test_wrong_code_is_401(self, api: ApiHarness) -> None:
        _seed_package(api, "learner@example.com")
        api.client.post("/api/v1/auth/request-code", json={"email": "learner@example.com"})
        code = api.mailer.last_code_for("learner@example.com")
        wrong = "000000" if code != "000000" else "111111"
        resp = api.client.post("/api/v1/auth/verify-code", json={"email": "learner@example.com", "code": wrong})
        assert resp.status_code == 401
        assert _error(resp)["message"] == "Invalid email or code."

    def test_malformed_code_is_422(self, api: ApiHarness) -> None:
        resp = api.client.post("/api/v1/auth/verify-code", json={"email": "learner@example.com", "code": "12ab"})
        assert resp.status_code == 422
        assert _error(resp)["code"] == "validation_error"
        assert "detail" not in _error(resp)

    def test_invalid_login_body_hides_field_detail(self, api: ApiHarness) -> None:
        resp = api.client.post("/api/v1/auth/request-code", json={"email": "not-an-email"})
        assert resp.status_code == 422
        assert _error(resp) == {"code": "validation_error", "message": "Invalid request."}
        assert "body.email" not in resp.text
        assert api.mailer.sent == []

    def test_verify_sets_cookie_and_logout_clears(self, api: ApiHarness) -> None:
        _seed_package(api, "learner@example.com")
        login_customer(api, "learner@example.com")
        assert api.client.cookies.get("rv_session")
        assert api.client.get("/api/v1/vault").status_code == 200

        resp = api.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert api.client.get("/api/v1/vault").status_code == 401

    def test_code_cannot_be_reused(self, api: ApiHarness) -> None:
        _seed_package(api, "learner@example.com")
        login_customer(api, "learner@example.com")
        code = api.mailer.last_code_for("learner@example.com")
        resp = api.client.post("/api/v1/auth/verify-code", json={"email": "learner@example.com", "code": code})
        assert resp.status_code == 401

    def test_request_code_rate_limited(self, api: ApiHarness) -> None:
        """Five attempts per (IP, email) per 15 minutes; the sixth is 429."""
        for _ in range(5):
            api.client.post("/api/v1/auth/request-code", json={"email": "stranger@example.com"})
        resp = api.client.post("/api/v1/auth/request-code", json={"email": "stranger@example.com"})
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) >= 1
        assert _error(resp)["code"] == "rate_limited"
        # A different email has its own bucket.
        other = api.client.post("/api/v1/auth/request-code", json={"email": "other@example.com"})
        assert other.status_code == 404


# ---------------------------------------------------------------------------
# Vault listing
# ---------------------------------------------------------------------------


class TestVault:
    def test_requires_session(self, api: ApiHarness) -> None:
        resp = api.client.get("/api/v1/vault")
        assert resp.status_code == 401
        assert _error(resp)["code"] == "unauthorized"

    def test_lists_packages_without_storage_ids(self, api: ApiHarness) -> None:
        ids = _seed_package(api, "learner@example.com")
        login_customer(api, "learner@example.com")
        resp = api.client.get("/api/v1/vault")
        assert resp.status_code == 200
        assert DRIVE_ID not in resp.text

        data = resp.json()
        assert data["email"] == "learner@example.com"
        assets = {a["kind"]: a for a in data["packages"][0]["assets"]}
        assert assets["VIDEO"]["url"] == f"/api/v1/stream-ticket/{ids['VIDEO']}"
        assert assets["PDF"]["url"] == f"/api/v1/material/{ids['PDF']}"
        assert assets["VIDEO"]["mimeType"] == "video/mp4"


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


class TestMedia:
    @pytest.fixture
    def ids(self, api: ApiHarness) -> dict[str, str]:
        ids = _seed_package(api, "learner@example.com")
        login_customer(api, "learner@example.com")
        return ids

    def _ticket(self, api: ApiHarness, asset_id: str) -> str:
        resp = api.client.get(f"/api/v1/stream-ticket/{asset_id}")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["expiresInSeconds"] == 3600
        assert data["streamUrl"].startswith(f"/api/v1/stream/{asset_id}?token=")
        return data["streamUrl"]

    def test_full_stream(self, api: ApiHarness, ids: dict) -> None:
        resp = api.client.get(self._ticket(api, ids["VIDEO"]))
        assert resp.status_code == 200
        assert resp.content == api.drive.body
        assert resp.headers["cache-control"] == "private, no-store, max-age=0"
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["content-disposition"] == 'inline; filename="Session 1"'
        assert api.drive.opened == [(f"{DRIVE_ID}v", None)]
        assert api.drive.upstreams[0].closed is True

    def test_range_request_relays_206(self, api: ApiHarness, ids: dict) -> None:
        resp = api.client.get(self._ticket(api, ids["VIDEO"]), headers={"Range": "bytes=0-3"})
        assert resp.status_code == 206
        assert resp.content == b"0123"
        assert resp.headers["content-range"] == "bytes 0-3/10"
        assert resp.headers["accept-ranges"] == "bytes"
        assert api.drive.opened[-1] == (f"{DRIVE_ID}v", "bytes=0-3")

    def test_token_bound_to_user_agent(self, api: ApiHarness, ids: dict) -> None:
        url = self._ticket(api, ids["VIDEO"])
        resp = api.client.get(url, headers={"User-Agent": "another-browser"})
        assert resp.status_code == 403
        assert api.drive.opened == []

    def test_token_bound_to_ip(self, api: ApiHarness, ids: dict) -> None:
        url = self._ticket(api, ids["VIDEO"])
        resp = api.client.get(url, headers={"X-Forwarded-For": "198.51.100.23"})
        assert resp.status_code == 403

    def test_token_for_other_asset_rejected(self, api: ApiHarness, ids: dict) -> None:
        url = self._ticket(api, ids["VIDEO"])
        token = parse_qs(urlparse(url).query)["token"][0]
        resp = api.client.get(f"/api/v1/stream/{ids['PDF']}", params={"token": token})
        assert resp.status_code == 403

    def test_missing_token_rejected(self, api: ApiHarness, ids: dict) -> None:
        assert api.client.get(f"/api/v1/stream/{ids['VIDEO']}").status_code == 403

    def test_stream_requires_session(self, api: ApiHarness, ids: dict) -> None:
        url = self._ticket(api, ids["VIDEO"])
        api.client.post("/api/v1/auth/logout")
        assert api.client.get(url).status_code == 401

    def test_ticket_for_document_is_404(self, api: ApiHarness, ids: dict) -> None:
        assert api.client.get(f"/api/v1/stream-ticket/{ids['PDF']}").status_code == 404

    def test_material_relay(self, api: ApiHarness, ids: dict) -> None:
        resp = api.client.get(f"/api/v1/material/{ids['PDF']}")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/pdf")
        assert resp.headers["content-disposition"] == 'inline; filename="Resume notes.pdf"'
        assert resp.content == api.drive.body

    def test_material_route_refuses_video(self, api: ApiHarness, ids: dict) -> None:
        assert api.client.get(f"/api/v1/material/{ids['VIDEO']}").status_code == 404

    def test_other_users_asset_is_404(self, api: ApiHarness, ids: dict) -> None:
        """Someone else's asset is indistinguishable from a missing one."""
        theirs = _seed_package(api, "other@example.com", request_id="req-other")
        assert api.client.get(f"/api/v1/stream-ticket/{theirs['VIDEO']}").status_code == 404
        assert api.client.get(f"/api/v1/material/{theirs['PDF']}").status_code == 404
        assert api.client.get("/api/v1/material/does-not-exist").status_code == 404

    def test_upstream_failure_is_502(self, api: ApiHarness, ids: dict) -> None:
        api.drive.fail = True
        resp = api.client.get(f"/api/v1/material/{ids['PDF']}")
        assert resp.status_code == 502
        assert _error(resp)["code"] == "upstream_failure"


# ---------------------------------------------------------------------------
# Provisioning webhook
# ---------------------------------------------------------------------------


def _direct_body(request_id: str = "order-1") -> dict:
    return {
        "email": "Buyer@Example.com",
        "requestId": request_id,
        "packageTitle": "Spring workshop",
        "recordings": [{"assetId": "rec-1", "title": "Day 1", "kind": "VIDEO", "googleDriveFileId": DRIVE_ID}],
        "materials": [
            {
                "title": "Handout",
                "kind": "PDF",
                "googleDriveFileId": f"https://docs.google.com/document/d/{DRIVE_ID}h/edit",
            }
        ],
    }


class TestProvision:
    def test_missing_signature_is_401(self, api: ApiHarness) -> None:
        resp = _provision(api, _direct_body(), headers={"Content-Type": "application/json"})
        assert resp.status_code == 401
        assert get_vault_by_email(api.vault_store, "buyer@example.com") is None

    def test_stale_timestamp_is_401(self, api: ApiHarness) -> None:
        resp = _provision(api, _direct_body(), headers=_signed_headers(int(time.time()) - 3600))
        assert resp.status_code == 401

    def test_legacy_header_names_accepted(self, api: ApiHarness) -> None:
        ts = str(int(time.time()))
        headers = {"X-N8N-Timestamp": ts, "X-N8N-Signature": sign_webhook_timestamp(ts)}
        assert _provision(api, _direct_body(), headers=headers).status_code == 200

    def test_invalid_json_is_400(self, api: ApiHarness) -> None:
        resp = _provision(api, "{not json")
        assert resp.status_code == 400
        assert _error(resp)["message"] == "Invalid JSON body."

    def test_unrecognized_payload_lists_formats(self, api: ApiHarness) -> None:
        resp = _provision(api, {"email": "buyer@example.com"})
        assert resp.status_code == 400
        detail = _error(resp)["detail"]
        assert len(detail["acceptedFormats"]) == 3
        assert "bookedClassErrors" in detail

    def test_direct_assets(self, api: ApiHarness) -> None:
        resp = _provision(api, _direct_body())
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["email"] == "buyer@example.com"
        assert data["vaultLink"] == "http://testserver/vault"
        assert data["totalAssets"] == 2
        assert "packages" not in data

    def test_direct_assets_idempotent(self, api: ApiHarness) -> None:
        first = _provision(api, _direct_body()).json()
        second = _provision(api, _direct_body()).json()
        assert first["packageId"] == second["packageId"]
        owner = get_vault_by_email(api.vault_store, "buyer@example.com")
        packages = get_vault_by_user_id(api.vault_store, owner.user_id).packages
        assert len(packages) == 1
        assert len(packages[0].assets) == 2

    def test_catalog_assign(self, api: ApiHarness) -> None:
        upsert_catalog_video_entry(api.vault_store, make_catalog_entry("C1"))
        resp = _provision(api, {"email": "buyer@example.com", "videoIds": ["C1"], "requestId": "order-7"})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["totalPackages"] == 1
        assert data["packages"][0]["videoId"] == "C1"
        assert len(data["vaultSlug"]) == 24

    def test_catalog_assign_unknown_ids(self, api: ApiHarness) -> None:
        upsert_catalog_video_entry(api.vault_store, make_catalog_entry("C1"))
        resp = _provision(api, {"email": "buyer@example.com", "videoIds": ["C1", "C9"]})
        assert resp.status_code == 400
        assert _error(resp)["detail"] == {"missingVideoIds": ["C9"]}
        assert get_vault_by_email(api.vault_store, "buyer@example.com") is None

    def test_booked_class(self, api: ApiHarness) -> None:
        body = {
            "email": "buyer@example.com",
            "requestId": "booking-3",
            "booked_class": [
                {
                    "class_information": {"id": 12, "class_code": "PY101", "price": 25},
                    "title": "Python basics",
                    "class_date": "2026-05-01",
                    "recordings": [{"title": "Recording", "kind": "VIDEO", "googleDriveFileId": DRIVE_ID}],
                }
            ],
        }
        resp = _provision(api, body)
        assert resp.status_code == 200, resp.text
        assert resp.json()["packages"][0]["classCode"] == "PY101"

        owner = get_vault_by_email(api.vault_store, "buyer@example.com")
        package = get_vault_by_user_id(api.vault_store, owner.user_id).packages[0]
        assert package.external_request_id == "booking-3:PY101:12"
        assert package.title == "PY101 - Python basics"
        assert package.class_price == 25

    def test_booked_class_entry_without_assets(self, api: ApiHarness) -> None:
        body = {
            "email": "buyer@example.com",
            "booked_class": [{"class_information": {"class_code": "PY101"}, "title": "Python basics"}],
        }
        resp = _provision(api, body)
        assert resp.status_code == 400
        assert _error(resp)["detail"]["classCode"] == "PY101"
        assert get_vault_by_email(api.vault_store, "buyer@example.com") is None

    def test_webhook_rate_limited(self, api: ApiHarness) -> None:
        for _ in range(120):
            _provision(api, "{not json")
        resp = _provision(api, _direct_body())
        assert resp.status_code == 429


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class TestAdminAuth:
    def test_endpoints_require_admin(self, api: ApiHarness) -> None:
        assert api.client.get("/api/v1/admin/entries").status_code == 401
        assert api.client.post("/api/v1/admin/users", json={"email": "a@x.com"}).status_code == 401
        assert api.client.get("/api/v1/admin/drive/status").status_code == 401

    def test_customer_session_is_not_admin(self, api: ApiHarness) -> None:
        _seed_package(api, "learner@example.com")
        login_customer(api, "learner@example.com")
        assert api.client.get("/api/v1/admin/entries").status_code == 401

    def test_bad_credentials(self, api: ApiHarness) -> None:
        resp = api.client.post("/api/v1/admin/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"})
        assert resp.status_code == 401
        assert _error(resp)["message"] == "Invalid admin credentials."

    def test_login_and_logout(self, api: ApiHarness) -> None:
        login_admin(api)
        assert api.client.get("/api/v1/admin/entries").status_code == 200
        resp = api.client.post("/api/v1/admin/auth/logout")
        assert resp.headers["cache-control"] == "no-store"
        assert api.client.get("/api/v1/admin/entries").status_code == 401

    def test_login_rate_limited(self, api: ApiHarness) -> None:
        for _ in range(10):
            api.client.post("/api/v1/admin/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"})
        resp = api.client.post("/api/v1/admin/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 429


class TestAdminUsers:
    def test_register_is_get_or_create(self, api: ApiHarness) -> None:
        login_admin(api)
        first = api.client.post("/api/v1/admin/users", json={"email": "New@Example.com"}).json()
        second = api.client.post("/api/v1/admin/users", json={"email": "new@example.com"}).json()
        assert first["created"] is True
        assert second["created"] is False
        assert first["vaultSlug"] == second["vaultSlug"]

    def test_register_rate_limited_per_email(self, api: ApiHarness) -> None:
        login_admin(api)
        for _ in range(5):
            api.client.post("/api/v1/admin/users", json={"email": "new@example.com"})
        assert api.client.post("/api/v1/admin/users", json={"email": "new@example.com"}).status_code == 429
        assert api.client.post("/api/v1/admin/users", json={"email": "else@example.com"}).status_code == 200

    def test_csv_import(self, api: ApiHarness) -> None:
        login_admin(api)
        upsert_catalog_video_entry(api.vault_store, make_catalog_entry("C1"))
        csv_text = "Email Address,Class Code\na@x.com,C1\nb@x.com,NOPE\n"
        resp = api.client.post("/api/v1/admin/users/import", json={"csv": csv_text})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["provisionedUsers"] == 1
        assert data["failedUsers"] == 1
        assert data["errors"][0]["email"] == "b@x.com"

    def test_csv_import_empty(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.post("/api/v1/admin/users/import", json={"csv": ""})
        assert resp.status_code == 400


class TestAdminEntries:
    def _entry(self, **overrides) -> dict:
        body = {
            "videoId": "C1",
            "classCode": "C1",
            "classTitle": "Intro",
            "classPrice": 10,
            "recording": {"title": "Recording", "googleDriveFileId": DRIVE_ID},
            "materials": [{"title": "Slides", "kind": "PDF", "googleDriveFileId": f"{DRIVE_ID}s"}],
        }
        body.update(overrides)
        return body

    def test_save_then_list(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.post("/api/v1/admin/entries", json=self._entry())
        assert resp.status_code == 200, resp.text
        assert resp.json()["updatedExistingPackages"] == 0

        items = api.client.get("/api/v1/admin/entries").json()["items"]
        assert len(items) == 1
        assert items[0]["materials"][0]["assetId"] == "C1:mat:1"

    def test_edit_pushes_to_assigned_packages(self, api: ApiHarness) -> None:
        login_admin(api)
        api.client.post("/api/v1/admin/entries", json=self._entry())
        _provision(api, {"email": "buyer@example.com", "videoId": "C1"})

        resp = api.client.post("/api/v1/admin/entries", json=self._entry(classTitle="Intro v2"))
        assert resp.json()["updatedExistingPackages"] == 1
        owner = get_vault_by_email(api.vault_store, "buyer@example.com")
        assert get_vault_by_user_id(api.vault_store, owner.user_id).packages[0].title == "C1 - Intro v2"

    def test_material_kind_validated(self, api: ApiHarness) -> None:
        login_admin(api)
        bad = self._entry(materials=[{"title": "Clip", "kind": "VIDEO", "googleDriveFileId": f"{DRIVE_ID}s"}])
        resp = api.client.post("/api/v1/admin/entries", json=bad)
        assert resp.status_code == 422
        assert any(d["path"].startswith("body.materials") for d in _error(resp)["detail"])


class TestAdminDrive:
    def test_connect_flow(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.get("/api/v1/admin/drive/connect", follow_redirects=False)
        assert resp.status_code == 302
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        assert api.client.cookies.get("rv_drive_connect_state") == state

        resp = api.client.get(
            "/api/v1/admin/drive/callback", params={"code": "ok", "state": state}, follow_redirects=False
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://testserver/admin?drive=connected"
        assert api.drive.saved == [("refresh-token", "owner@example.com")]

        status = api.client.get("/api/v1/admin/drive/status").json()
        assert status["connected"] is True
        assert status["email"] == "owner@example.com"

    def test_callback_rejects_wrong_state(self, api: ApiHarness) -> None:
        login_admin(api)
        api.client.get("/api/v1/admin/drive/connect", follow_redirects=False)
        resp = api.client.get(
            "/api/v1/admin/drive/callback", params={"code": "ok", "state": "forged"}, follow_redirects=False
        )
        assert resp.headers["location"].endswith("drive=error&reason=invalid_state")
        assert api.drive.saved == []

    def test_callback_without_admin_goes_to_login(self, api: ApiHarness) -> None:
        resp = api.client.get(
            "/api/v1/admin/drive/callback", params={"code": "ok", "state": "x"}, follow_redirects=False
        )
        assert resp.headers["location"] == "http://testserver/admin/login"

    def test_callback_exchange_failure(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.get("/api/v1/admin/drive/connect", follow_redirects=False)
        state = parse_qs(urlparse(resp.headers["location"]).query)["state"][0]
        resp = api.client.get(
            "/api/v1/admin/drive/callback", params={"code": "bad", "state": state}, follow_redirects=False
        )
        assert resp.headers["location"].endswith("reason=token_exchange_failed")

    def test_provider_error_passed_through(self, api: ApiHarness) -> None:
        resp = api.client.get(
            "/api/v1/admin/drive/callback", params={"error": "access_denied"}, follow_redirects=False
        )
        assert resp.headers["location"].endswith("drive=error&reason=access_denied")

    def test_file_lookup_accepts_links(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.get(
            "/api/v1/admin/drive/file", params={"value": f"https://drive.google.com/open?id={DRIVE_ID}"}
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == DRIVE_ID
        assert resp.json()["mimeType"] == "video/mp4"

    def test_file_lookup_rejects_garbage(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.get("/api/v1/admin/drive/file", params={"value": "https://example.com/x"})
        assert resp.status_code == 400

    def test_file_listing(self, api: ApiHarness) -> None:
        login_admin(api)
        resp = api.client.get("/api/v1/admin/drive/files", params={"q": "lecture", "pageSize": 5})
        assert resp.status_code == 200
        assert resp.json()["files"][0]["title"] == "lecture.pdf"
        assert resp.json()["nextPageToken"] is None
