"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper.
Route, middleware and service code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  username and email are UNIQUE at the table level. Callers that pre-check
  for duplicates must still treat IntegrityError from create_account() as a
  conflict: two concurrent registrations can both pass the pre-check.

  complete_password_reset() updates WHERE id AND token match, so a token that
  was consumed or replaced in between cannot be used twice.

Every update_* method returns the refreshed Account, or None when the id does
not exist.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine

from auth.models import Account, Role
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="editor"),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("profile_photo", Text),
    Column("is_profile_public", Integer, nullable=False, server_default="0"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("verification_code", String(16)),
    Column("verification_code_expires_at", String(32)),
    Column("verification_code_attempts", Integer, nullable=False, server_default="0"),
    Column("password_reset_token", String(64), index=True),
    Column("password_reset_expires_at", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields PUT /profile and the admin profile edit may touch. Validated before
# any write so dynamic column names never come from request input.
_PROFILE_FIELDS = frozenset({"username", "email", "first_name", "last_name"})


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Build the Engine shared by AccountStore and SessionStore."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(username="ada", email="ada@example.com",
                                                  hashed_password=hash_password("...")))
        account = store.get_by_username("ada")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_store_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=account.username,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    role=Role(account.role).value,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    profile_photo=account.profile_photo,
                    is_profile_public=1 if account.is_profile_public else 0,
                    email_verified=1 if account.email_verified else 0,
                    verification_code=account.verification_code,
                    verification_code_expires_at=account.verification_code_expires_at,
                    verification_code_attempts=account.verification_code_attempts,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, account_id: int) -> Account | None:
        return self._get_one(_users.c.id == account_id)

    def get_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive)."""
        return self._get_one(_users.c.username == username)

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email. Emails are stored lower-cased."""
        return self._get_one(_users.c.email == email.strip().lower())

    def get_by_reset_token(self, token: str) -> Account | None:
        if not token:
            return None
        return self._get_one(_users.c.password_reset_token == token)

    def list_accounts(self) -> list[Account]:
        """Return all accounts, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_account(r) for r in rows]

    def list_public_profiles(self) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.is_profile_public == 1).order_by(_users.c.username)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    # ------------------------------------------------------------------
    # Credential and profile updates
    # ------------------------------------------------------------------

    def update_role(self, account_id: int, role: Role) -> Account | None:
        return self._update(account_id, role=Role(role).value)

    def update_email(self, account_id: int, email: str) -> Account | None:
        return self._update(account_id, email=email.strip().lower())

    def update_password(self, account_id: int, hashed_password: str) -> Account | None:
        return self._update(account_id, hashed_password=hashed_password)

    def update_profile(self, account_id: int, *, hashed_password: str | None = None, **fields) -> Account | None:
        """Update profile fields. Accepted: username, email, first_name, last_name.

        Unknown keys raise ValueError rather than being ignored. Empty-string
        names are stored as NULL. A `hashed_password` is written in the same
        UPDATE as the profile fields.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        if "email" in fields and fields["email"] is not None:
            fields["email"] = fields["email"].strip().lower()
        for name in ("first_name", "last_name"):
            if name in fields:
                fields[name] = fields[name] or None
        if hashed_password is not None:
            fields["hashed_password"] = hashed_password
        if not fields:
            return self.get_by_id(account_id)
        return self._update(account_id, **fields)

    def update_profile_photo(self, account_id: int, photo_path: str | None) -> Account | None:
        return self._update(account_id, profile_photo=photo_path or None)

    def update_visibility(self, account_id: int, is_public: bool) -> Account | None:
        return self._update(account_id, is_profile_public=1 if is_public else 0)

    def update_last_login(self, account_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == account_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def set_verification_code(self, account_id: int, code: str, expires_at: str) -> Account | None:
        """Store a fresh code, overwriting any previous one, and reset attempts to 0."""
        return self._update(
            account_id,
            verification_code=code,
            verification_code_expires_at=expires_at,
            verification_code_attempts=0,
        )

    def increment_verification_attempts(self, account_id: int) -> int:
        """Add one to the attempt counter and return the new value (0 if no such account)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == account_id)
                .values(verification_code_attempts=_users.c.verification_code_attempts + 1)
            )
            conn.commit()
            if result.rowcount == 0:
                return 0
            return conn.execute(
                select(_users.c.verification_code_attempts).where(_users.c.id == account_id)
            ).scalar_one()

    def mark_email_verified(self, account_id: int) -> Account | None:
        return self._update(
            account_id,
            email_verified=1,
            verification_code=None,
            verification_code_expires_at=None,
            verification_code_attempts=0,
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_password_reset_token(self, account_id: int, token: str, expires_at: str) -> Account | None:
        return self._update(account_id, password_reset_token=token, password_reset_expires_at=expires_at)

    def clear_password_reset_token(self, account_id: int) -> Account | None:
        return self._update(account_id, password_reset_token=None, password_reset_expires_at=None)

    def complete_password_reset(self, account_id: int, token: str, hashed_password: str) -> bool:
        """Set the new password and consume the token in one row update.

        Returns False when the token no longer matches (already used or
        replaced by a newer request).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == account_id) & (_users.c.password_reset_token == token))
                .values(
                    hashed_password=hashed_password,
                    password_reset_token=None,
                    password_reset_expires_at=None,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    def delete_account(self, account_id: int) -> bool:
        """Permanently delete an account. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_one(self, clause) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    def _update(self, account_id: int, **values) -> Account | None:
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == account_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.get_by_id(account_id)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        first_name=row.first_name,
        last_name=row.last_name,
        profile_photo=row.profile_photo,
        is_profile_public=bool(row.is_profile_public),
        email_verified=bool(row.email_verified),
        verification_code=row.verification_code,
        verification_code_expires_at=row.verification_code_expires_at,
        verification_code_attempts=row.verification_code_attempts or 0,
        password_reset_token=row.password_reset_token,
        password_reset_expires_at=row.password_reset_expires_at,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
