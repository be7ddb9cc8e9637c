"""
vendors/store.py -- SQLAlchemy Core persistence for vendor requests and profiles.

Pattern: Repository + Data Mapper (same as auth/store.py).
VendorStore is the repository; _row_to_request / _row_to_profile are the mappers.

UNIQUE(user_id) on both tables enforces "one request per user" and "one
profile per vendor" at the DB level, backing the checks in vendors/workflow.py.

categories and tags are JSON arrays serialized as text.

Security:
  All queries use bound parameters. Search terms go through LIKE with a
  bound pattern; no string interpolation into SQL.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from vendors.models import PROFILE_ACTIVE, REQUEST_PENDING, VendorProfile, VendorRequest

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'storefront_vendors.db'}"

# Vendor self-service may change these; status, approval, and ownership fields are admin-only.
PROFILE_SELF_SERVICE_FIELDS = frozenset(
    {
        "business_name",
        "business_description",
        "business_address",
        "business_phone",
        "business_email",
        "business_license",
        "tax_number",
        "business_type",
        "website",
        "categories",
        "tags",
    }
)

_PROFILE_MUTABLE_FIELDS = PROFILE_SELF_SERVICE_FIELDS | {
    "status",
    "is_verified",
    "rating_average",
    "rating_count",
    "total_products",
    "total_orders",
    "total_revenue",
    "total_customers",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_requests = Table(
    "vendor_requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False, unique=True),
    Column("business_name", String(255), nullable=False),
    Column("business_description", Text, nullable=False),
    Column("business_address", Text, nullable=False),
    Column("business_phone", String(20), nullable=False),
    Column("business_email", String(255), nullable=False),
    Column("business_license", String(100), nullable=False),
    Column("tax_number", String(100), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("requested_at", String(32), nullable=False),
    Column("reviewed_at", String(32)),
    Column("reviewed_by", String(64)),
    Column("review_notes", Text),
    Column("rejection_reason", Text),
)

_profiles = Table(
    "vendor_profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False, unique=True),
    Column("business_name", String(255), nullable=False),
    Column("business_description", Text),
    Column("business_address", Text),
    Column("business_phone", String(20)),
    Column("business_email", String(255)),
    Column("business_license", String(100)),
    Column("tax_number", String(100)),
    Column("business_type", String(20), nullable=False, server_default="individual"),
    Column("website", String(255)),
    Column("categories", Text),  # JSON array serialized as text
    Column("tags", Text),  # JSON array, like categories
    Column("rating_average", Float, nullable=False, server_default="0"),
    Column("rating_count", Integer, nullable=False, server_default="0"),
    Column("total_products", Integer, nullable=False, server_default="0"),
    Column("total_orders", Integer, nullable=False, server_default="0"),
    Column("total_revenue", Float, nullable=False, server_default="0"),
    Column("total_customers", Integer, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("approved_at", String(32)),
    Column("approved_by", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode. Set per-connection; PRAGMAs are not inherited."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VendorStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Vendor requests
    # ------------------------------------------------------------------

    def create_request(self, request: VendorRequest) -> int:
        """Insert a new request and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the user already has one.
        """
        request.requested_at = request.requested_at or _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _requests.insert().values(
                    user_id=request.user_id,
                    business_name=request.business_name,
                    business_description=request.business_description,
                    business_address=request.business_address,
                    business_phone=request.business_phone,
                    business_email=request.business_email,
                    business_license=request.business_license,
                    tax_number=request.tax_number,
                    status=request.status,
                    requested_at=request.requested_at,
                )
            )
            conn.commit()
            request.id = result.inserted_primary_key[0]
            return request.id

    def get_request_by_user(self, user_id: str) -> Optional[VendorRequest]:
        with self.engine.connect() as conn:
            row = conn.execute(_requests.select().where(_requests.c.user_id == user_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(
        self, status: Optional[str] = REQUEST_PENDING, offset: int = 0, limit: int = 10
    ) -> tuple[list[VendorRequest], int]:
        """Return (page of requests newest first, total matching count)."""
        conditions = [_requests.c.status == status] if status else []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _requests.select()
                .where(*conditions)
                .order_by(_requests.c.requested_at.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_requests).where(*conditions)).scalar() or 0
        return [_row_to_request(r) for r in rows], total

    def update_request(self, user_id: str, **fields) -> bool:
        """Update review fields on a user's request. Returns True if a row changed."""
        with self.engine.connect() as conn:
            result = conn.execute(_requests.update().where(_requests.c.user_id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Vendor profiles
    # ------------------------------------------------------------------

    def create_profile(self, profile: VendorProfile) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _profiles.insert().values(
                    user_id=profile.user_id,
                    business_name=profile.business_name,
                    business_description=profile.business_description,
                    business_address=profile.business_address,
                    business_phone=profile.business_phone,
                    business_email=profile.business_email,
                    business_license=profile.business_license,
                    tax_number=profile.tax_number,
                    business_type=profile.business_type,
                    website=profile.website,
                    categories=json.dumps(profile.categories),
                    tags=json.dumps(profile.tags),
                    status=profile.status,
                    is_verified=1 if profile.is_verified else 0,
                    approved_at=profile.approved_at,
                    approved_by=profile.approved_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            profile.id = result.inserted_primary_key[0]
            return profile.id

    def get_profile_by_user(self, user_id: str) -> Optional[VendorProfile]:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.user_id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_profile(self, profile_id: int) -> Optional[VendorProfile]:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.id == profile_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def update_profile(self, user_id: str, **fields) -> bool:
        unknown = set(fields) - _PROFILE_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown vendor profile fields: {unknown!r}")
        for list_field in ("categories", "tags"):
            if list_field in fields:
                fields[list_field] = json.dumps(fields[list_field] or [])
        if "is_verified" in fields:
            fields["is_verified"] = 1 if fields["is_verified"] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.update().where(_profiles.c.user_id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_profile(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_profiles.delete().where(_profiles.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def list_active_profiles(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[VendorProfile], int]:
        """Active vendors, best rated first, filtered by name/description and category."""
        conditions = [_profiles.c.status == PROFILE_ACTIVE]
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(_profiles.c.business_name.ilike(pattern), _profiles.c.business_description.ilike(pattern))
            )
        if category:
            # categories is a JSON array; match the quoted element.
            conditions.append(_profiles.c.categories.like(f'%"{category}"%'))
        with self.engine.connect() as conn:
            rows = conn.execute(
                _profiles.select()
                .where(*conditions)
                .order_by(_profiles.c.rating_average.desc(), _profiles.c.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).fetchall()
            total = conn.execute(select(func.count()).select_from(_profiles).where(*conditions)).scalar() or 0
        return [_row_to_profile(r) for r in rows], total

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_request(row) -> VendorRequest:
    return VendorRequest(
        id=row.id,
        user_id=row.user_id,
        business_name=row.business_name,
        business_description=row.business_description,
        business_address=row.business_address,
        business_phone=row.business_phone,
        business_email=row.business_email,
        business_license=row.business_license,
        tax_number=row.tax_number,
        status=row.status,
        requested_at=row.requested_at,
        reviewed_at=row.reviewed_at,
        reviewed_by=row.reviewed_by,
        review_notes=row.review_notes,
        rejection_reason=row.rejection_reason,
    )


def _row_to_profile(row) -> VendorProfile:
    return VendorProfile(
        id=row.id,
        user_id=row.user_id,
        business_name=row.business_name,
        business_description=row.business_description or "",
        business_address=row.business_address or "",
        business_phone=row.business_phone or "",
        business_email=row.business_email or "",
        business_license=row.business_license or "",
        tax_number=row.tax_number or "",
        business_type=row.business_type,
        website=row.website,
        categories=json.loads(row.categories) if row.categories else [],
        tags=json.loads(row.tags) if row.tags else [],
        rating_average=row.rating_average,
        rating_count=row.rating_count,
        total_products=row.total_products,
        total_orders=row.total_orders,
        total_revenue=row.total_revenue,
        total_customers=row.total_customers,
        status=row.status,
        is_verified=bool(row.is_verified),
        approved_at=row.approved_at,
        approved_by=row.approved_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
