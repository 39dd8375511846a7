"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_user is the mapper. Route and dependency code never touches SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Password hashes are produced here (bcrypt, via auth.passwords) and never
  returned to the api/ layer in a response model.

Uniqueness:
  Email and user name are unique through UNIQUE constraints on their
  normalized (upper-cased) forms. create_user() does NOT look the email up
  first -- two concurrent registrations for the same address both reach the
  INSERT and the database rejects the loser. The IntegrityError is the only
  duplicate signal and is reported as a failed IdentityResult.

Role order:
  user_roles carries an autoincrement surrogate key; get_roles() orders by it
  so "first role" means "first assigned role".

DB path: authapi.db at the project root unless DATABASE_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import IdentityError, IdentityResult, Role, User
from auth.passwords import hash_password, validate_password, verify_dummy, verify_password
from core.config import Settings, get_settings

logger = logging.getLogger("authapi.store")

_ALLOWED_USER_NAME_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-._@+")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_name", String(256), nullable=False),
    Column("normalized_user_name", String(256), nullable=False, unique=True),
    Column("email", String(256), nullable=False),
    Column("normalized_email", String(256), nullable=False, unique=True),
    Column("full_name", String(256)),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(256), nullable=False),
    Column("normalized_name", String(256), nullable=False, unique=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("role_id", String(36), ForeignKey("roles.id"), nullable=False),
    UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys=ON makes deleting a user that
    still holds role rows fail instead of leaving orphans.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize(value: str) -> str:
    return value.strip().upper()


def _is_valid_email(email: str) -> bool:
    if not email or any(c.isspace() for c in email):
        return False
    local, sep, domain = email.partition("@")
    return bool(sep) and bool(local) and bool(domain) and "@" not in domain


def _concurrency_failure() -> IdentityError:
    return IdentityError("ConcurrencyFailure", "Optimistic concurrency failure, object has been modified.")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for users, roles, and role memberships.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        result = store.create_user(User(email="a@x.com", user_name="a@x.com"), "Passw0rd!")
        user = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        db_url = db_url or self._settings.database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, password: str) -> IdentityResult:
        """Validate, hash the password, and insert the user.

        Validation order: user name, email, then password policy. All failures
        are collected; the caller usually shows only the first.
        """
        errors = self._validate_user(user)
        errors.extend(validate_password(password, self._settings))
        if errors:
            return IdentityResult.failed(*errors)

        user.password_hash = hash_password(password)
        user.created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        user_name=user.user_name,
                        normalized_user_name=_normalize(user.user_name),
                        email=user.email,
                        normalized_email=_normalize(user.email),
                        full_name=user.full_name,
                        password_hash=user.password_hash,
                        created_at=user.created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            logger.info("Rejected duplicate user %s", user.email)
            if "email" in str(exc.orig).lower():
                return IdentityResult.failed(IdentityError("DuplicateEmail", f"Email '{user.email}' is already taken."))
            return IdentityResult.failed(
                IdentityError("DuplicateUserName", f"Username '{user.user_name}' is already taken.")
            )
        return IdentityResult.success()

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.normalized_email == _normalize(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.normalized_email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def check_password(self, user: User | None, password: str) -> bool:
        """Return True if password matches the user's stored hash.

        Passing user=None is allowed and still runs bcrypt once so an unknown
        email costs the same time as a wrong password.
        """
        if user is None or not user.password_hash:
            return verify_dummy(password)
        return verify_password(password, user.password_hash)

    def delete_user(self, user: User) -> IdentityResult:
        """Delete the user row.

        Fails with ConcurrencyFailure when the row is already gone or still
        referenced by role memberships (remove_from_roles() first).
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.delete().where(_users.c.id == user.id))
                conn.commit()
        except IntegrityError:
            logger.warning("Delete of user %s blocked by dependent rows", user.id)
            return IdentityResult.failed(_concurrency_failure())
        if result.rowcount == 0:
            return IdentityResult.failed(_concurrency_failure())
        return IdentityResult.success()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def role_exists(self, name: str) -> bool:
        return self._find_role(name) is not None

    def create_role(self, name: str) -> IdentityResult:
        if not name or not name.strip():
            return IdentityResult.failed(IdentityError("InvalidRoleName", f"Role name '{name}' is invalid."))
        role = Role(name=name)
        try:
            with self.engine.connect() as conn:
                conn.execute(_roles.insert().values(id=role.id, name=role.name, normalized_name=_normalize(name)))
                conn.commit()
        except IntegrityError:
            return IdentityResult.failed(IdentityError("DuplicateRoleName", f"Role name '{name}' is already taken."))
        logger.info("Created role %s", name)
        return IdentityResult.success()

    def get_roles(self, user: User) -> list[str]:
        """Return the user's role names in assignment order."""
        query = (
            select(_roles.c.name)
            .select_from(_user_roles.join(_roles, _user_roles.c.role_id == _roles.c.id))
            .where(_user_roles.c.user_id == user.id)
            .order_by(_user_roles.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [r.name for r in rows]

    def add_to_role(self, user: User, role_name: str) -> IdentityResult:
        """Associate user with an existing role.

        Raises LookupError if the role has not been created.
        """
        role = self._find_role(role_name)
        if role is None:
            raise LookupError(f"Role {role_name!r} does not exist.")
        try:
            with self.engine.connect() as conn:
                conn.execute(_user_roles.insert().values(user_id=user.id, role_id=role.id))
                conn.commit()
        except IntegrityError as exc:
            if "foreign key" in str(exc.orig).lower():
                return IdentityResult.failed(_concurrency_failure())
            return IdentityResult.failed(IdentityError("UserAlreadyInRole", f"User already in role '{role_name}'."))
        return IdentityResult.success()

    def remove_from_roles(self, user: User, role_names: list[str]) -> IdentityResult:
        """Remove every listed membership in one transaction.

        Nothing is committed if any of the roles is not currently assigned.
        """
        with self.engine.connect() as conn:
            for name in role_names:
                role_row = conn.execute(
                    _roles.select().where(_roles.c.normalized_name == _normalize(name))
                ).fetchone()
                deleted = 0
                if role_row is not None:
                    deleted = conn.execute(
                        _user_roles.delete().where(
                            (_user_roles.c.user_id == user.id) & (_user_roles.c.role_id == role_row.id)
                        )
                    ).rowcount
                if deleted == 0:
                    conn.rollback()
                    return IdentityResult.failed(IdentityError("UserNotInRole", f"User is not in role '{name}'."))
            conn.commit()
        return IdentityResult.success()

    # ------------------------------------------------------------------
    # Health / lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Identity store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_role(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.normalized_name == _normalize(name))).fetchone()
        return Role(id=row.id, name=row.name) if row is not None else None

    @staticmethod
    def _validate_user(user: User) -> list[IdentityError]:
        errors: list[IdentityError] = []
        if not user.user_name or any(c not in _ALLOWED_USER_NAME_CHARS for c in user.user_name):
            errors.append(
                IdentityError(
                    "InvalidUserName",
                    f"Username '{user.user_name}' is invalid, can only contain letters or digits.",
                )
            )
        if not _is_valid_email(user.email):
            errors.append(IdentityError("InvalidEmail", f"Email '{user.email}' is invalid."))
        return errors


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        user_name=row.user_name,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )
