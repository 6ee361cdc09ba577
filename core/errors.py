"""
core/errors.py -- Domain error taxonomy for RecordVault.

Stores, the ingestion engine, and the media proxy raise these; api/main.py
maps each one onto an HTTP status and the shared error envelope. Every class
carries a machine-readable code and a default client-facing message. Messages
are deliberately generic for customer-facing failures so a caller cannot tell
which check rejected it.
"""

from typing import Optional


class VaultError(Exception):
    """Base class for every error the API layer renders itself."""

    code: str = "error"
    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class Unauthorized(VaultError):
    """Missing, expired, or invalid session or admin session."""

    code = "unauthorized"
    status_code = 401
    message = "Unauthorized."


class StreamTokenRejected(Unauthorized):
    """Stream token failed verification. Never says which check failed."""

    code = "forbidden_stream_token"
    status_code = 403
    message = "Forbidden stream token."


class RateLimited(VaultError):
    code = "rate_limited"
    status_code = 429
    message = "Too many requests. Try again later."

    def __init__(self, reset_at: float, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class PayloadValidationError(VaultError):
    """Malformed or incomplete payload.

    details holds field-level errors. Operator-facing endpoints include them
    in the response; customer-facing endpoints drop them.
    """

    code = "validation_error"
    status_code = 400
    message = "Invalid request payload."

    def __init__(self, message: Optional[str] = None, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.details = details


class NotFound(VaultError):
    """Absent, or present but not owned by the caller -- indistinguishable."""

    code = "not_found"
    status_code = 404
    message = "Not found."


class PreconditionFailed(VaultError):
    """Catalog assignment referenced unknown video ids. Nothing was written."""

    code = "precondition_failed"
    status_code = 400
    message = "Some videoIds are not found in catalog."

    def __init__(self, missing_video_ids: list[str], message: Optional[str] = None) -> None:
        super().__init__(message)
        self.missing_video_ids = missing_video_ids


class UpstreamFailure(VaultError):
    """Storage or mail provider error. Not retried automatically."""

    code = "upstream_failure"
    status_code = 502
    message = "Upstream provider request failed."
