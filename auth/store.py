"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_invite are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use credentials are consumed with conditional UPDATEs whose WHERE
  clause restates every precondition (unused, unexpired, matching digest).
  rowcount == 1 is the only success signal, so two concurrent requests can
  never both redeem the same invite or reset token.

Timestamps: expiry columns hold naive UTC datetimes. created_at / last_login
are ISO 8601 strings for display only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import ROLE_ADMIN, ROLE_CLIENT, InviteToken, User

logger = logging.getLogger("fitcoach.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False, server_default=ROLE_CLIENT),
    Column("coach_id", Integer, ForeignKey("users.id")),
    Column("reset_password_token", String(64)),  # HMAC-SHA256 hex of the emailed token
    Column("reset_password_expires", DateTime),
    Column("onboarding_completed", Boolean, nullable=False, server_default="0"),
    Column("onboarding_step", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_invite_tokens = Table(
    "invite_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("coach_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("email", String(255), nullable=False),
    Column("token", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", DateTime, nullable=False),
    Column("used", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

# Fields callers may change through update_user(). Credentials have their own
# dedicated methods.
_MUTABLE_USER_FIELDS = frozenset({"role", "coach_id", "onboarding_completed", "onboarding_step"})


class InviteUnavailableError(Exception):
    """The invite was consumed or expired between lookup and registration."""


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store's expiry convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and InviteToken entities.

    Usage:
        store = UserStore("sqlite:///fitcoach.db")
        uid = store.create_user(User(email="a@b.com", password_hash=hash_password("...")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, invite_id: int | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        When invite_id is given, the invite is marked used in the same
        transaction. If it is no longer redeemable, InviteUnavailableError is
        raised and nothing is written. If the INSERT fails the invite update
        is rolled back with it.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            if invite_id is not None:
                consumed = conn.execute(
                    _invite_tokens.update()
                    .where(
                        (_invite_tokens.c.id == invite_id)
                        & _invite_tokens.c.used.is_(False)
                        & (_invite_tokens.c.expires_at > utcnow())
                    )
                    .values(used=True)
                )
                if consumed.rowcount != 1:
                    raise InviteUnavailableError(f"invite {invite_id} is used or expired")
            result = conn.execute(
                _users.insert().values(
                    email=user.email.lower(),
                    password_hash=user.password_hash,
                    role=user.role,
                    coach_id=user.coach_id,
                    onboarding_completed=user.onboarding_completed,
                    onboarding_step=user.onboarding_step,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def list_users(self) -> list[User]:
        """Return all users ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile fields on an existing user.

        Accepted fields: role, coach_id, onboarding_completed, onboarding_step.
        Unknown keys raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def demote_admin(self, user_id: int, new_role: str) -> bool:
        """Move an ADMIN to new_role unless they are the only ADMIN left.

        The count of other admins is part of the UPDATE's WHERE clause, so two
        concurrent demotions cannot both leave the system without an admin.
        Returns False when the user is not an ADMIN or is the last one.
        """
        others = _users.alias("other_admins")
        other_admins = (
            select(func.count())
            .select_from(others)
            .where((others.c.role == ROLE_ADMIN) & (others.c.id != user_id))
            .scalar_subquery()
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.role == ROLE_ADMIN) & (other_admins > 0))
                .values(role=new_role)
            )
        return result.rowcount == 1

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_reset_token(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store a pending reset token digest, replacing any earlier one."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_password_token=token_hash, reset_password_expires=expires_at)
            )
            conn.commit()

    def consume_reset_token(self, email: str, token_hash: str, new_password_hash: str) -> bool:
        """Replace the password if and only if the reset token is valid right now.

        The token digest, the email and the expiry are all checked in the
        UPDATE's WHERE clause, and the token is cleared by the same statement.
        A second call with the same token therefore matches zero rows.

        Returns True if the password was changed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.email == email.strip().lower())
                    & (_users.c.reset_password_token == token_hash)
                    & (_users.c.reset_password_expires >= utcnow())
                )
                .values(
                    password_hash=new_password_hash,
                    reset_password_token=None,
                    reset_password_expires=None,
                )
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Invite tokens
    # ------------------------------------------------------------------

    def create_invite(self, invite: InviteToken) -> int:
        """Insert a new invite token record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _invite_tokens.insert().values(
                    coach_id=invite.coach_id,
                    email=invite.email.lower(),
                    token=invite.token,
                    expires_at=invite.expires_at,
                    used=False,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_active_invite(self, token_hash: str) -> InviteToken | None:
        """Look up an unused, unexpired invite by token digest."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _invite_tokens.select().where(
                    (_invite_tokens.c.token == token_hash)
                    & _invite_tokens.c.used.is_(False)
                    & (_invite_tokens.c.expires_at > utcnow())
                )
            ).fetchone()
        return _row_to_invite(row) if row is not None else None

    def get_invite_by_id(self, invite_id: int) -> InviteToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_invite_tokens.select().where(_invite_tokens.c.id == invite_id)).fetchone()
        return _row_to_invite(row) if row is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        coach_id=row.coach_id,
        reset_password_token=row.reset_password_token,
        reset_password_expires=row.reset_password_expires,
        onboarding_completed=bool(row.onboarding_completed),
        onboarding_step=row.onboarding_step,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_invite(row) -> InviteToken:
    return InviteToken(
        id=row.id,
        coach_id=row.coach_id,
        email=row.email,
        token=row.token,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )
