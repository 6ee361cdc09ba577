"""
tests/test_payloads.py -- Tests for the provisioning payload models in api/models.py.

resolve_provision_payload() tries catalog_assign, direct_assets, then
booked_class, and the first variant that validates wins. These tests pin
that precedence and the normalizations applied on the way in.
"""

import pytest

from api.models import (
    BookedClassPayload,
    CatalogAssignPayload,
    DirectAssetsPayload,
    EmailRequest,
    resolve_provision_payload,
)
from conftest import DRIVE_ID
from core.errors import PayloadValidationError


def _asset(**overrides) -> dict:
    asset = {"title": "Recording", "kind": "VIDEO", "googleDriveFileId": DRIVE_ID}
    asset.update(overrides)
    return asset


class TestCatalogAssign:
    def test_all_id_spellings_merge_in_order(self) -> None:
        payload = resolve_provision_payload(
            {"email": " A@X.com", "videoIds": ["C1"], "video_ids": ["C2"], "videoId": "C3"}
        )
        assert isinstance(payload, CatalogAssignPayload)
        assert payload.email == "a@x.com"
        assert payload.all_video_ids() == ["C1", "C2", "C3"]

    def test_single_video_id(self) -> None:
        payload = resolve_provision_payload({"email": "a@x.com", "videoId": "C1", "requestId": "r-1"})
        assert isinstance(payload, CatalogAssignPayload)
        assert payload.request_id == "r-1"

    def test_blank_id_in_list_rejected(self) -> None:
        with pytest.raises(PayloadValidationError):
            resolve_provision_payload({"email": "a@x.com", "videoIds": ["C1", " "]})


class TestDirectAssets:
    def test_resolves_with_drive_link_normalized(self) -> None:
        link = f"https://drive.google.com/file/d/{DRIVE_ID}/view?usp=sharing"
        payload = resolve_provision_payload(
            {
                "email": "a@x.com",
                "packageTitle": "Workshop",
                "recordings": [_asset(googleDriveFileId=link, assetId="rec-1")],
                "materials": [_asset(title="Notes", kind="PDF", googleDriveFileId=f"{DRIVE_ID}n", sizeBytes=10)],
            }
        )
        assert isinstance(payload, DirectAssetsPayload)
        assert payload.recordings[0].google_drive_file_id == DRIVE_ID
        assert payload.recordings[0].asset_id == "rec-1"
        assert payload.materials[0].size_bytes == 10

    @pytest.mark.parametrize(
        "bad_asset",
        [
            _asset(kind="MP3"),
            _asset(googleDriveFileId="short"),
            _asset(sizeBytes=0),
            _asset(title=""),
        ],
    )
    def test_invalid_asset_rejected(self, bad_asset: dict) -> None:
        with pytest.raises(PayloadValidationError):
            resolve_provision_payload({"email": "a@x.com", "packageTitle": "W", "recordings": [bad_asset]})


class TestBookedClass:
    def test_resolves_snake_case_keys(self) -> None:
        payload = resolve_provision_payload(
            {
                "email": "a@x.com",
                "requestId": "order-1",
                "booked_class": [
                    {
                        "class_information": {"id": 7, "class_code": "PY101", "price": 19.5},
                        "title": "Python basics",
                        "class_date": "2026-05-01",
                        "recordings": [_asset()],
                    }
                ],
            }
        )
        assert isinstance(payload, BookedClassPayload)
        assert payload.request_id == "order-1"
        item = payload.booked_class[0]
        assert item.class_information.class_code == "PY101"
        assert item.class_information.id == 7

    def test_empty_booked_class_rejected(self) -> None:
        with pytest.raises(PayloadValidationError):
            resolve_provision_payload({"email": "a@x.com", "booked_class": []})


class TestNoVariantMatches:
    def test_details_list_every_variant(self) -> None:
        with pytest.raises(PayloadValidationError) as excinfo:
            resolve_provision_payload({"email": "not-an-email"})
        details = excinfo.value.details
        assert len(details["acceptedFormats"]) == 3
        for key in ("catalogAssignErrors", "directAssetErrors", "bookedClassErrors"):
            assert details[key], key
            assert {"path", "message"} <= set(details[key][0])

    def test_non_object_body(self) -> None:
        with pytest.raises(PayloadValidationError):
            resolve_provision_payload(["not", "an", "object"])


class TestEmailRequest:
    def test_email_trimmed_and_lowered(self) -> None:
        assert EmailRequest.model_validate({"email": "  Bob@Example.ORG "}).email == "bob@example.org"

    def test_invalid_email_rejected(self) -> None:
        with pytest.raises(ValueError):
            EmailRequest.model_validate({"email": "bob@"})
