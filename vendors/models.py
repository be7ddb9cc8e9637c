"""
vendors/models.py -- Domain dataclasses for vendor onboarding.

These are pure data containers with zero logic. The request state machine
lives in vendors/workflow.py; persistence in vendors/store.py.

VendorRequest.status moves pending -> approved | rejected and never back,
except when an approval is rolled back before it completes.
"""

from dataclasses import dataclass, field
from typing import Optional

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

PROFILE_ACTIVE = "active"
PROFILE_INACTIVE = "inactive"
PROFILE_SUSPENDED = "suspended"

# Business fields copied from the request onto the profile at approval.
BUSINESS_FIELDS = (
    "business_name",
    "business_description",
    "business_address",
    "business_phone",
    "business_email",
    "business_license",
    "tax_number",
)


@dataclass
class VendorRequest:
    """A customer's application to become a vendor. At most one per user."""

    user_id: str
    business_name: str
    business_description: str
    business_address: str
    business_phone: str
    business_email: str
    business_license: str
    tax_number: str
    status: str = REQUEST_PENDING
    id: Optional[int] = None
    requested_at: str = ""  # ISO 8601, set by store on insert
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None


@dataclass
class VendorProfile:
    """The public storefront of an approved vendor.

    Created exactly once, when the vendor's request is approved. rating and
    stats are updated by order processing, which lives outside this service.
    """

    user_id: str
    business_name: str
    business_description: str = ""
    business_address: str = ""
    business_phone: str = ""
    business_email: str = ""
    business_license: str = ""
    tax_number: str = ""
    business_type: str = "individual"  # "individual" | "company" | "partnership"
    website: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    rating_average: float = 0.0
    rating_count: int = 0
    total_products: int = 0
    total_orders: int = 0
    total_revenue: float = 0.0
    total_customers: int = 0
    status: str = PROFILE_ACTIVE
    is_verified: bool = False
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
