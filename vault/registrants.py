"""
vault/registrants.py -- Bulk catalog assignment from a registrant CSV export.

Each row names one attendee email and one class (catalog video id). Header
names vary between booking tools, so columns are matched against alias sets
after normalization: BOM stripped, trimmed, lower-cased, runs of spaces and
hyphens collapsed to "_".

Pipeline:
  CSV text -> parse_registrant_rows() -> list[dict]
  -> import_registrants(): group class codes per email (ordered, deduped)
  -> per email: upsert_user_and_vault() + assign_catalog_videos_to_email()

One bad email never aborts the import. Its failure is recorded in the report
and processing moves on to the next email.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field

from core.errors import PayloadValidationError, VaultError
from vault.ingest import assign_catalog_videos_to_email, upsert_user_and_vault
from vault.store import VaultStore

logger = logging.getLogger("recordvault.registrants")

EMAIL_ALIASES = ("email", "email_address", "emailaddress", "attendee_email", "user_email")
CLASS_CODE_ALIASES = ("class_code", "classcode", "class", "video_id", "videoid")

MAX_REPORTED_ERRORS = 20

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_HEADER_SEPARATORS = re.compile(r"[\s-]+")


@dataclass
class RegistrantImportReport:
    total_rows: int = 0
    valid_rows: int = 0
    unique_emails: int = 0
    upserted_users: int = 0
    provisioned_users: int = 0
    provisioned_class_codes: int = 0
    skipped_invalid: int = 0
    failed_users: int = 0
    errors: list[dict] = field(default_factory=list)


def normalize_header(value: str) -> str:
    return _HEADER_SEPARATORS.sub("_", value.lstrip("\ufeff").strip().lower())


def _get_by_aliases(row: dict, aliases: tuple) -> str:
    for key, value in row.items():
        if key is not None and normalize_header(key) in aliases:
            return (value or "").strip()
    return ""


def parse_registrant_rows(content: str) -> list[dict]:
    """Parse CSV text into a list of {header: value} dicts.

    Blank lines are skipped. Values are trimmed. Short rows get "" for the
    missing columns; extra cells beyond the header are dropped.
    """
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")), restval="")
    rows: list[dict] = []
    for row in reader:
        row.pop(None, None)
        if not any((v or "").strip() for v in row.values()):
            continue
        rows.append({(k or "").strip(): (v or "").strip() for k, v in row.items()})
    return rows


def group_registrants(rows: list[dict]) -> tuple[dict[str, list[str]], int]:
    """Return ({email: [class_code, ...]}, skipped_count).

    Emails are lower-cased. Class codes keep first-seen order and appear once
    per email even if the CSV repeats the row.
    """
    grouped: dict[str, dict[str, None]] = {}
    skipped = 0
    for row in rows:
        email = _get_by_aliases(row, EMAIL_ALIASES).lower()
        class_code = _get_by_aliases(row, CLASS_CODE_ALIASES)
        if not email or not class_code or not _EMAIL_RE.match(email):
            skipped += 1
            continue
        grouped.setdefault(email, {}).setdefault(class_code, None)
    return {email: list(codes) for email, codes in grouped.items()}, skipped


def import_registrants(store: VaultStore, content: str) -> RegistrantImportReport:
    """Assign catalog classes to every registrant in a CSV export.

    Raises PayloadValidationError only when the CSV itself is unusable (empty,
    or no data rows). Per-email failures go into the report.
    """
    if not (content or "").strip():
        raise PayloadValidationError("CSV content is required.")
    rows = parse_registrant_rows(content)
    if not rows:
        raise PayloadValidationError("CSV has no data rows.")

    grouped, skipped = group_registrants(rows)
    report = RegistrantImportReport(
        total_rows=len(rows),
        valid_rows=sum(len(codes) for codes in grouped.values()),
        unique_emails=len(grouped),
        skipped_invalid=skipped,
    )
    failures: list[dict] = []

    for email, class_codes in grouped.items():
        try:
            upsert_user_and_vault(store, email)
            report.upserted_users += 1
            assignment = assign_catalog_videos_to_email(store, email, class_codes)
        except VaultError as exc:
            failures.append({"email": email, "message": exc.message})
            continue
        except Exception as exc:
            logger.exception("Registrant import failed for %s", email)
            failures.append({"email": email, "message": str(exc) or "Unexpected error"})
            continue

        if not assignment.success:
            failures.append(
                {
                    "email": email,
                    "message": "Some videoIds are not found in catalog: " + ", ".join(assignment.missing_video_ids),
                }
            )
            continue
        report.provisioned_users += 1
        report.provisioned_class_codes += len(class_codes)

    report.failed_users = len(failures)
    report.errors = failures[:MAX_REPORTED_ERRORS]
    logger.info(
        "Registrant import: %d rows, %d emails, %d provisioned, %d failed, %d skipped",
        report.total_rows,
        report.unique_emails,
        report.provisioned_users,
        report.failed_users,
        report.skipped_invalid,
    )
    return report
