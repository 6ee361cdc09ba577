#!/usr/bin/env python3
"""
RecordVault -- operator command line.

Usage:
  python main.py init-db
  python main.py register alice@example.com
  python main.py import-registrants registrants.csv

Commands read the same environment / .env settings as the API
(DATABASE_URL, SECRET_KEY, ...). The API never needs init-db to have run --
its lifespan creates missing tables too -- but running it once makes the
schema step explicit in deploy scripts.
"""

import argparse
import logging
import sys
from pathlib import Path

from core.config import get_settings
from core.errors import VaultError
from db.schema import create_db_engine, init_schema
from vault.ingest import get_vault_by_email, upsert_user_and_vault
from vault.registrants import import_registrants
from vault.store import VaultStore

logger = logging.getLogger("recordvault.cli")


def _read_csv(path: str) -> str:
    """Read a CSV export. Resolves symlinks and requires a regular file."""
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise SystemExit(f"  [!] '{path}' is not a readable file.")
    try:
        return file_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise SystemExit(f"  [!] Could not read file '{path}': {e}") from e


def _cmd_init_db(store: VaultStore, args: argparse.Namespace) -> int:
    print("Schema is up to date.")
    return 0


def _cmd_register(store: VaultStore, args: argparse.Namespace) -> int:
    existing = get_vault_by_email(store, args.email)
    owner = upsert_user_and_vault(store, args.email)
    state = "already registered" if existing else "registered"
    print(f"  {owner.email} {state} (vault {owner.slug})")
    return 0


def _cmd_import_registrants(store: VaultStore, args: argparse.Namespace) -> int:
    report = import_registrants(store, _read_csv(args.file))
    print(f"  Rows:        {report.total_rows} ({report.skipped_invalid} skipped)")
    print(f"  Emails:      {report.unique_emails}")
    print(f"  Provisioned: {report.provisioned_users} users, {report.provisioned_class_codes} classes")
    if report.failed_users:
        print(f"  [!] {report.failed_users} email(s) failed:")
        for err in report.errors:
            print(f"      {err['email']}: {err['message']}")
        if report.failed_users > len(report.errors):
            print(f"      ... and {report.failed_users - len(report.errors)} more")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="recordvault",
        description="Operator tasks for the RecordVault media vault.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py register alice@example.com
  python main.py import-registrants export.csv
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    init_db = sub.add_parser("init-db", help="Create any missing tables")
    init_db.set_defaults(handler=_cmd_init_db)

    register = sub.add_parser("register", help="Get-or-create the user and vault for an email")
    register.add_argument("email", metavar="EMAIL")
    register.set_defaults(handler=_cmd_register)

    importer = sub.add_parser("import-registrants", help="Assign catalog classes from a registrant CSV")
    importer.add_argument("file", metavar="FILE", help="CSV with email and class_code columns")
    importer.set_defaults(handler=_cmd_import_registrants)

    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    engine = create_db_engine(settings.database_url)
    try:
        init_schema(engine)
        store = VaultStore(engine)
        return args.handler(store, args)
    except VaultError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
