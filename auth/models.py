"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Identity is the per-request view of a verified bearer token. User is the
locally stored record; its id is the identity provider's subject id, so the
two join on Identity.subject_id == User.id.

Layer rule: no imports from api/, core/, audit/, vendors/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class Role:
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    ADMIN = "Admin"
    SUPER_ADMIN = "SuperAdmin"

    ALL = (CUSTOMER, VENDOR, ADMIN, SUPER_ADMIN)


class UserStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class Identity:
    """The verified principal behind a bearer token.

    roles carries the provider's realm roles verbatim; there is no hierarchy
    (SuperAdmin does not imply Admin).
    """

    subject_id: str
    email: str
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)
    raw_token: str = field(default="", repr=False)
    first_name: str = ""
    last_name: str = ""
    email_verified: bool = False

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass
class User:
    """A platform user as stored locally.

    role mirrors the provider role assigned at registration or on vendor
    approval. reset_token_hash is the HMAC of the raw reset token, never the
    token itself.
    """

    id: str  # identity-provider subject id
    email: str
    username: str
    first_name: str = ""
    last_name: str = ""
    role: str = Role.CUSTOMER
    status: str = UserStatus.ACTIVE
    email_verified: bool = False
    phone: str | None = None
    vendor_request_status: str | None = None  # "pending", "approved", "rejected"
    vendor_requested_at: str | None = None
    vendor_approved_at: str | None = None
    vendor_approved_by: str | None = None
    reset_token_hash: str | None = None
    reset_token_expires: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
