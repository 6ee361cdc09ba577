"""
auth/store.py -- SQLAlchemy Core persistence layer for credentials.

Pattern: Repository + Data Mapper (same as vault/store.py).
CredentialStore is the repository; _row_to_user / _row_to_admin_session are
the mappers. Route and dependency code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Only secret-keyed hashes of session tokens and login codes reach this
  module. Lookups take the hash, never the raw value, so a SQL log or DB dump
  cannot be replayed.

  consume_login_code() marks a code used with a conditional UPDATE
  (consumed_at IS NULL) and checks the rowcount, so two concurrent verify
  requests cannot both succeed with the same code.

Users are read here but created by vault.store.VaultStore, because a user and
its vault must be inserted in one transaction.

Layer rule: no imports from api/, vault/, media/, or storage/.
"""

from __future__ import annotations

import time
import uuid

from sqlalchemy import and_, or_
from sqlalchemy.engine import Engine

from auth.models import AdminSession, LoginCode, Session, User
from core.config import now_iso
from db.schema import admin_sessions, app_settings, login_codes, sessions, users

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_ms() -> int:
    return int(time.time() * 1000)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for sessions, admin sessions, login codes, and key/value
    settings.

    Usage:
        engine = create_db_engine(settings.database_url)
        init_schema(engine)
        store = CredentialStore(engine)
        store.create_session(user.id, hash_with_secret(raw), expires_at)
        user = store.get_session_user(hash_with_secret(raw))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Users (read-only)
    # ------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by email. The caller passes the normalized form."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Customer sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, token_hash: str, expires_at: int) -> Session:
        current = now_ms()
        session = Session(
            id=_new_id(),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=current,
            last_seen_at=current,
        )
        with self.engine.connect() as conn:
            conn.execute(
                sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token_hash=session.token_hash,
                    expires_at=session.expires_at,
                    created_at=session.created_at,
                    last_seen_at=session.last_seen_at,
                )
            )
            conn.commit()
        return session

    def get_session_user(self, token_hash: str, at_ms: int | None = None) -> User | None:
        """Resolve an unexpired session to its user and refresh last_seen_at.

        Returns None when the hash is unknown or the session has expired.
        """
        current = at_ms if at_ms is not None else now_ms()
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select()
                .add_columns(sessions.c.id.label("session_id"))
                .select_from(sessions.join(users, users.c.id == sessions.c.user_id))
                .where(and_(sessions.c.token_hash == token_hash, sessions.c.expires_at > current))
            ).fetchone()
            if row is None:
                return None
            conn.execute(sessions.update().where(sessions.c.id == row.session_id).values(last_seen_at=current))
            conn.commit()
        return _row_to_user(row)

    def delete_session(self, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(sessions.delete().where(sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Admin sessions
    # ------------------------------------------------------------------

    def create_admin_session(self, admin_email: str, token_hash: str, expires_at: int) -> AdminSession:
        current = now_ms()
        admin_session = AdminSession(
            id=_new_id(),
            admin_email=admin_email,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=current,
            last_seen_at=current,
        )
        with self.engine.connect() as conn:
            conn.execute(
                admin_sessions.insert().values(
                    id=admin_session.id,
                    admin_email=admin_session.admin_email,
                    token_hash=admin_session.token_hash,
                    expires_at=admin_session.expires_at,
                    created_at=admin_session.created_at,
                    last_seen_at=admin_session.last_seen_at,
                )
            )
            conn.commit()
        return admin_session

    def get_admin_session(self, token_hash: str, at_ms: int | None = None) -> AdminSession | None:
        """Resolve an unexpired admin session and refresh last_seen_at."""
        current = at_ms if at_ms is not None else now_ms()
        with self.engine.connect() as conn:
            row = conn.execute(
                admin_sessions.select().where(
                    and_(admin_sessions.c.token_hash == token_hash, admin_sessions.c.expires_at > current)
                )
            ).fetchone()
            if row is None:
                return None
            conn.execute(admin_sessions.update().where(admin_sessions.c.id == row.id).values(last_seen_at=current))
            conn.commit()
        admin_session = _row_to_admin_session(row)
        admin_session.last_seen_at = current
        return admin_session

    def delete_admin_session(self, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(admin_sessions.delete().where(admin_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login codes
    # ------------------------------------------------------------------

    def create_login_code(self, user_id: str, code_hash: str, expires_at: int) -> LoginCode:
        code = LoginCode(
            id=_new_id(),
            user_id=user_id,
            code_hash=code_hash,
            expires_at=expires_at,
            created_at=now_ms(),
        )
        with self.engine.connect() as conn:
            conn.execute(
                login_codes.insert().values(
                    id=code.id,
                    user_id=code.user_id,
                    code_hash=code.code_hash,
                    expires_at=code.expires_at,
                    created_at=code.created_at,
                    consumed_at=None,
                )
            )
            conn.commit()
        return code

    def consume_login_code(self, user_id: str, code_hash: str, at_ms: int | None = None) -> bool:
        """Mark the newest matching, unexpired, unconsumed code as used.

        Returns True only if this call performed the transition. A second
        call with the same code returns False.
        """
        current = at_ms if at_ms is not None else now_ms()
        with self.engine.connect() as conn:
            row = conn.execute(
                login_codes.select()
                .where(
                    and_(
                        login_codes.c.user_id == user_id,
                        login_codes.c.code_hash == code_hash,
                        login_codes.c.consumed_at.is_(None),
                        login_codes.c.expires_at > current,
                    )
                )
                .order_by(login_codes.c.created_at.desc())
                .limit(1)
            ).fetchone()
            if row is None:
                return False
            result = conn.execute(
                login_codes.update()
                .where(and_(login_codes.c.id == row.id, login_codes.c.consumed_at.is_(None)))
                .values(consumed_at=current)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def prune_expired_auth_rows(self, at_ms: int | None = None) -> int:
        """Delete expired sessions, expired or consumed login codes, and
        expired admin sessions. Returns the number of rows removed.
        """
        current = at_ms if at_ms is not None else now_ms()
        with self.engine.connect() as conn:
            removed = conn.execute(sessions.delete().where(sessions.c.expires_at <= current)).rowcount
            removed += conn.execute(
                login_codes.delete().where(
                    or_(login_codes.c.expires_at <= current, login_codes.c.consumed_at.is_not(None))
                )
            ).rowcount
            removed += conn.execute(admin_sessions.delete().where(admin_sessions.c.expires_at <= current)).rowcount
            conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Key/value settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        with self.engine.connect() as conn:
            row = conn.execute(app_settings.select().where(app_settings.c.key == key)).fetchone()
        return row.value if row is not None else None

    def get_settings_map(self, keys: list[str]) -> dict[str, str]:
        """Return {key: value} for the keys that are present."""
        with self.engine.connect() as conn:
            rows = conn.execute(app_settings.select().where(app_settings.c.key.in_(keys))).fetchall()
        return {r.key: r.value for r in rows}

    def set_settings(self, values: dict[str, str]) -> None:
        """Insert or overwrite each key in one transaction."""
        stamp = now_iso()
        with self.engine.begin() as conn:
            for key, value in values.items():
                updated = conn.execute(
                    app_settings.update().where(app_settings.c.key == key).values(value=value, updated_at=stamp)
                ).rowcount
                if not updated:
                    conn.execute(app_settings.insert().values(key=key, value=value, updated_at=stamp))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_admin_session(row) -> AdminSession:
    return AdminSession(
        id=row.id,
        admin_email=row.admin_email,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
        last_seen_at=row.last_seen_at,
    )
