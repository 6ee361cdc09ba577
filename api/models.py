"""
API request and response models for RecordVault REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in vault/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: JSON keys are camelCase (the provisioning webhook and the
browser client both speak camelCase). Python attributes stay snake_case via
alias_generator=to_camel. The booked_class webhook variant is the exception
-- its keys come from the booking system verbatim and keep snake_case.

Customer-facing responses never carry storage file ids.

Separation of concerns: vault/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from core.errors import PayloadValidationError
from storage.drive import extract_drive_file_id

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

ACCEPTED_PROVISION_FORMATS = [
    "catalog_assign: { email, requestId?, videoIds[] | videoId | video_ids[] }",
    "direct_assets: { email, requestId?, packageTitle, recordings[], materials[] }",
    "booked_class: { email, requestId?, booked_class[] }",
]

AssetKind = Literal["VIDEO", "PDF", "ZIP"]


def _normalize_drive_id(value: Any) -> Any:
    """Accept a Drive id or a Drive/Docs link; leave anything else for the
    pattern check to reject."""
    if isinstance(value, str):
        return extract_drive_file_id(value) or value.strip()
    return value


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python. Unknown keys are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class _EmailBody(_WireModel):
    """Any body keyed by a customer email. The email is trimmed and lower-cased
    before the pattern check, so stored and compared forms always match."""

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


# ---------------------------------------------------------------------------
# Customer auth -- request models
# ---------------------------------------------------------------------------


class EmailRequest(_EmailBody):
    """Request body for POST /auth/request-code and POST /admin/users."""


class VerifyCodeRequest(_EmailBody):
    code: str = Field(pattern=r"^\d{6}$")


class AdminLoginRequest(_EmailBody):
    # max_length caps the work done by the constant-time comparison.
    password: str = Field(min_length=1, max_length=255)


class RegistrantImportRequest(_WireModel):
    csv: str = Field(default="", max_length=5_000_000)


# ---------------------------------------------------------------------------
# Provisioning webhook -- request models
# ---------------------------------------------------------------------------


class InboundAsset(_WireModel):
    asset_id: Optional[str] = Field(default=None, min_length=1)
    title: str = Field(min_length=1)
    kind: AssetKind
    google_drive_file_id: str = Field(pattern=r"^[A-Za-z0-9_-]{10,}$")
    mime_type: Optional[str] = Field(default=None, min_length=2)
    size_bytes: Optional[int] = Field(default=None, gt=0)

    @field_validator("google_drive_file_id", mode="before")
    @classmethod
    def normalize_drive_id(cls, value: Any) -> Any:
        return _normalize_drive_id(value)


class CatalogAssignPayload(_EmailBody):
    request_id: Optional[str] = Field(default=None, min_length=1)
    video_id_list: Optional[list[str]] = Field(default=None, alias="videoIds", min_length=1)
    video_id: Optional[str] = Field(default=None, alias="videoId", min_length=1)
    # Snake-case spelling sent by some booking integrations.
    video_ids: Optional[list[str]] = Field(default=None, alias="video_ids", min_length=1)

    @field_validator("video_id_list", "video_ids")
    @classmethod
    def non_empty_ids(cls, values: Optional[list[str]]) -> Optional[list[str]]:
        if values is not None and any(not v.strip() for v in values):
            raise ValueError("video ids must be non-empty strings")
        return values

    @model_validator(mode="after")
    def require_some_id(self) -> "CatalogAssignPayload":
        if not (self.video_id or self.video_id_list or self.video_ids):
            raise ValueError("Provide at least one video ID in videoId, videoIds, or video_ids.")
        return self

    def all_video_ids(self) -> list[str]:
        return [*(self.video_id_list or []), *(self.video_ids or []), *([self.video_id] if self.video_id else [])]


class DirectAssetsPayload(_EmailBody):
    request_id: Optional[str] = Field(default=None, min_length=1)
    package_title: str = Field(min_length=1)
    recordings: list[InboundAsset] = Field(default_factory=list)
    materials: list[InboundAsset] = Field(default_factory=list)


class BookedClassInformation(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = Field(default=None, gt=0)
    class_code: str = Field(min_length=1)
    price: Optional[float] = Field(default=None, ge=0)


class BookedClassItem(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    class_information: BookedClassInformation
    title: str = Field(min_length=1)
    class_date: Optional[str] = Field(default=None, min_length=1)
    request_id: Optional[str] = Field(default=None, alias="requestId", min_length=1)
    recordings: list[InboundAsset] = Field(default_factory=list)
    materials: list[InboundAsset] = Field(default_factory=list)


class BookedClassPayload(_EmailBody):
    request_id: Optional[str] = Field(default=None, min_length=1)
    booked_class: list[BookedClassItem] = Field(alias="booked_class", min_length=1)


ProvisionPayload = Union[CatalogAssignPayload, DirectAssetsPayload, BookedClassPayload]

# Tried in this order; the first variant that validates wins.
_PROVISION_VARIANTS: list[tuple[str, type[BaseModel]]] = [
    ("catalogAssignErrors", CatalogAssignPayload),
    ("directAssetErrors", DirectAssetsPayload),
    ("bookedClassErrors", BookedClassPayload),
]


def _format_errors(exc: ValidationError) -> list[dict]:
    return [
        {"path": ".".join(str(p) for p in err["loc"]) or "(root)", "message": err["msg"]} for err in exc.errors()
    ]


def resolve_provision_payload(data: Any) -> ProvisionPayload:
    """Return the first payload variant that validates.

    Raises PayloadValidationError listing the accepted formats and every
    variant's field errors when none does.
    """
    details: dict[str, Any] = {"acceptedFormats": ACCEPTED_PROVISION_FORMATS}
    for key, model in _PROVISION_VARIANTS:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            details[key] = _format_errors(exc)
    raise PayloadValidationError(details=details)


# ---------------------------------------------------------------------------
# Catalog admin -- request models
# ---------------------------------------------------------------------------


class _CatalogAssetInput(_WireModel):
    asset_id: Optional[str] = Field(default=None, min_length=1)
    title: str = Field(min_length=1)
    google_drive_file_id: str = Field(pattern=r"^[A-Za-z0-9_-]{10,}$")
    mime_type: Optional[str] = Field(default=None, min_length=2)
    size_bytes: Optional[int] = Field(default=None, gt=0)

    @field_validator("google_drive_file_id", mode="before")
    @classmethod
    def normalize_drive_id(cls, value: Any) -> Any:
        return _normalize_drive_id(value)


class RecordingInput(_CatalogAssetInput):
    kind: Literal["VIDEO"] = "VIDEO"


class MaterialInput(_CatalogAssetInput):
    kind: Literal["PDF", "ZIP"]


class CatalogEntryRequest(_WireModel):
    """Request body for POST /api/v1/admin/entries."""

    video_id: str = Field(min_length=1, max_length=255)
    class_code: str = Field(min_length=1, max_length=255)
    class_title: str = Field(min_length=1)
    class_date: Optional[str] = Field(default=None, min_length=1)
    class_price: Optional[float] = Field(default=None, ge=0)
    recording: RecordingInput
    materials: list[MaterialInput] = Field(default_factory=list, max_length=50)


# ---------------------------------------------------------------------------
# Shared response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"


class MessageResponse(_ResponseModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Customer responses
# ---------------------------------------------------------------------------


class StreamTicketResponse(_ResponseModel):
    success: bool = True
    stream_url: str
    expires_in_seconds: int


class VaultAssetView(_ResponseModel):
    """One asset as the customer sees it -- a proxy URL, never a storage id."""

    id: str
    title: str
    kind: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    url: str


class VaultPackageView(_ResponseModel):
    id: str
    title: str
    class_code: Optional[str] = None
    class_date: Optional[str] = None
    class_price: Optional[float] = None
    created_at: Optional[str] = None
    assets: list[VaultAssetView] = Field(default_factory=list)


class VaultResponse(_ResponseModel):
    email: str
    slug: str
    packages: list[VaultPackageView] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Provisioning responses
# ---------------------------------------------------------------------------


class ProvisionedPackage(_ResponseModel):
    package_id: str
    total_assets: int
    class_code: Optional[str] = None
    class_title: Optional[str] = None
    class_date: Optional[str] = None
    video_id: Optional[str] = None


class ProvisionResponse(_ResponseModel):
    """Response for POST /api/v1/provision. Fields not relevant to the
    payload variant are omitted."""

    success: bool = True
    email: str
    vault_link: str
    vault_slug: Optional[str] = None
    package_id: Optional[str] = None
    total_assets: Optional[int] = None
    total_packages: Optional[int] = None
    packages: Optional[list[ProvisionedPackage]] = None
    message: str


# ---------------------------------------------------------------------------
# Admin responses
# ---------------------------------------------------------------------------


class RegisterResponse(_ResponseModel):
    success: bool = True
    email: str
    vault_slug: str
    created: bool
    message: str


class ImportErrorRow(_ResponseModel):
    email: str
    message: str


class RegistrantImportResponse(_ResponseModel):
    success: bool = True
    total_rows: int
    valid_rows: int
    unique_emails: int
    upserted_users: int
    provisioned_users: int
    provisioned_class_codes: int
    skipped_invalid: int
    failed_users: int
    errors: list[ImportErrorRow] = Field(default_factory=list)
    message: str = "CSV import completed."


class CatalogMaterialView(_ResponseModel):
    asset_id: str
    title: str
    kind: str
    google_drive_file_id: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None


class CatalogEntryView(_ResponseModel):
    video_id: str
    class_code: str
    class_title: str
    class_date: Optional[str] = None
    class_price: Optional[float] = None
    google_drive_file_id: str
    mime_type: Optional[str] = None
    materials: list[CatalogMaterialView] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CatalogEntryListResponse(_ResponseModel):
    success: bool = True
    items: list[CatalogEntryView]


class CatalogEntrySaveResponse(_ResponseModel):
    success: bool = True
    video_id: str
    class_code: str
    class_title: str
    updated_existing_packages: int
    upserted_assets: int
    message: str = "Catalog entry saved."


class DriveStatusResponse(_ResponseModel):
    success: bool = True
    connected: bool
    source: str
    email: Optional[str] = None
    connected_at: Optional[str] = None
    client_configured: bool


class DriveFileView(_ResponseModel):
    id: str
    title: str
    mime_type: str
    size_bytes: Optional[int] = None
    web_view_link: Optional[str] = None


class DriveFileListResponse(_ResponseModel):
    success: bool = True
    files: list[DriveFileView]
    next_page_token: Optional[str] = None
