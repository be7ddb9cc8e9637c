"""
auth/store.py -- SQLAlchemy Core persistence layer for local user records.

Pattern: Repository + Data Mapper (same as vendors/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only the reset token's HMAC is stored; lookup matches on the hash and an
  unexpired timestamp in one query.

Layer rule: no imports from api/, audit/, vendors/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'storefront_users.db'}"

# Fields update_user() accepts; anything else is a programming error.
_MUTABLE_FIELDS = frozenset(
    {
        "email",
        "username",
        "first_name",
        "last_name",
        "role",
        "status",
        "email_verified",
        "phone",
        "vendor_request_status",
        "vendor_requested_at",
        "vendor_approved_at",
        "vendor_approved_by",
        "reset_token_hash",
        "reset_token_expires",
        "last_login",
    }
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),  # identity-provider subject id
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default="Customer"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("phone", String(20)),
    Column("vendor_request_status", String(20)),
    Column("vendor_requested_at", String(32)),
    Column("vendor_approved_at", String(32)),
    Column("vendor_approved_by", String(64)),
    Column("reset_token_hash", String(64), index=True),
    Column("reset_token_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", Text),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(id=subject_id, email="a@b.co", username="ab"))
        user = store.get_by_id(subject_id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError on a duplicate id, email, or username.
        """
        now = _now_iso()
        user.created_at = user.created_at or now
        user.updated_at = now
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    email=user.email,
                    username=user.username,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role=user.role,
                    status=user.status,
                    email_verified=1 if user.email_verified else 0,
                    phone=user.phone,
                    vendor_request_status=user.vendor_request_status,
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                )
            )
            conn.commit()
        return user

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (stored lowercased). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token_hash(self, token_hash: str) -> User | None:
        """Return the user holding this reset token hash if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.reset_token_hash == token_hash) & (_users.c.reset_token_expires > _now_iso())
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        *,
        role: str | None = None,
        status: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[User], int]:
        """Return (page of users newest first, total matching count)."""
        conditions = []
        if role:
            conditions.append(_users.c.role == role)
        if status:
            conditions.append(_users.c.status == status)
        query = _users.select().where(*conditions).order_by(_users.c.created_at.desc()).offset(offset).limit(limit)
        count_query = select(func.count()).select_from(_users).where(*conditions)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_user(r) for r in rows], total

    def stats(self, registered_since: str) -> dict:
        """Aggregate user counts for the admin dashboards.

        registered_since is an ISO-8601 UTC timestamp; created_at values share
        that format, so string comparison orders them correctly.
        """
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users)).scalar() or 0
            verified = (
                conn.execute(select(func.count()).select_from(_users).where(_users.c.email_verified == 1)).scalar()
                or 0
            )
            recent = (
                conn.execute(
                    select(func.count()).select_from(_users).where(_users.c.created_at >= registered_since)
                ).scalar()
                or 0
            )
            by_status = conn.execute(select(_users.c.status, func.count()).group_by(_users.c.status)).fetchall()
            by_role = conn.execute(select(_users.c.role, func.count()).group_by(_users.c.role)).fetchall()
        return {
            "total": total,
            "verified": verified,
            "recent": recent,
            "by_status": {status: count for status, count in by_status},
            "by_role": {role: count for role, count in by_role},
        }

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        email_verified must be passed as bool; this method converts to int.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        status=row.status,
        email_verified=bool(row.email_verified),
        phone=row.phone,
        vendor_request_status=row.vendor_request_status,
        vendor_requested_at=row.vendor_requested_at,
        vendor_approved_at=row.vendor_approved_at,
        vendor_approved_by=row.vendor_approved_by,
        reset_token_hash=row.reset_token_hash,
        reset_token_expires=row.reset_token_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
