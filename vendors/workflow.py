"""
vendors/workflow.py -- Vendor onboarding state machine.

    (none) --submit_request--> pending --review(approved)--> approved
                                       \\-review(rejected)--> rejected

  submit_request  Customer identities only; at most one request per user,
                  ever. business_email defaults to the identity's email.
  approve         runs as a Saga, each step paired with its undo:
                    1. provider role Vendor       <- remove the role again
                    2. local user -> Vendor       <- restore previous fields
                    3. request -> approved        <- back to pending
                    4. vendor profile created     <- delete it
                  A failed step rolls back the completed ones; a failed
                  rollback surfaces as PartialFailureError.
  reject          request -> rejected with reason; user role unchanged; no
                  profile.

Vendor self-service (profile read/update, stats) and the public directory
live here too, so routes stay thin.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from auth.models import Identity, Role, User, UserStatus
from auth.provider import IdentityProvider, call_provider
from auth.store import UserStore
from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.saga import Saga
from vendors.models import (
    BUSINESS_FIELDS,
    PROFILE_ACTIVE,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    VendorProfile,
    VendorRequest,
)
from vendors.store import PROFILE_SELF_SERVICE_FIELDS, VendorStore

logger = logging.getLogger("storefront.vendors")

APPROVAL_NOTES = "Approved via admin panel"
REJECTION_NOTES = "Rejected via admin panel"

_USER_APPROVAL_FIELDS = ("role", "status", "vendor_request_status", "vendor_approved_at", "vendor_approved_by")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class VendorWorkflow:
    def __init__(self, users: UserStore, vendors: VendorStore, provider: IdentityProvider) -> None:
        self.users = users
        self.vendors = vendors
        self.provider = provider

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit_request(self, identity: Identity, data: dict[str, Any]) -> VendorRequest:
        if not identity.has_role(Role.CUSTOMER):
            raise AuthorizationError("Only customers can request vendor status")
        user = self.users.get_by_id(identity.subject_id)
        if user is None:
            raise NotFoundError("User not found")
        if self.vendors.get_request_by_user(user.id) is not None:
            raise ValidationError("Vendor request already exists")

        request = VendorRequest(
            user_id=user.id,
            business_name=data["business_name"],
            business_description=data["business_description"],
            business_address=data["business_address"],
            business_phone=data["business_phone"],
            business_email=(data.get("business_email") or identity.email).lower(),
            business_license=data["business_license"],
            tax_number=data["tax_number"],
        )
        self.vendors.create_request(request)
        self.users.update_user(user.id, vendor_request_status=REQUEST_PENDING, vendor_requested_at=request.requested_at)
        logger.info("Vendor request %s submitted by %s", request.id, user.id)
        return request

    def get_request(self, user_id: str) -> VendorRequest:
        request = self.vendors.get_request_by_user(user_id)
        if request is None:
            raise NotFoundError("Vendor request not found")
        return request

    def list_pending(self, page: int = 1, limit: int = 10) -> tuple[list[VendorRequest], int]:
        return self.vendors.list_requests(REQUEST_PENDING, offset=(page - 1) * limit, limit=limit)

    def review(self, user_id: str, approved: bool, reviewer_id: str, reason: Optional[str] = None) -> Any:
        """Approve (returns the updated User) or reject (returns the VendorRequest)."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        request = self.vendors.get_request_by_user(user_id)
        if request is None or request.status != REQUEST_PENDING:
            raise ValidationError("No pending vendor request for this user")
        if approved:
            return self._approve(user, request, reviewer_id)
        return self._reject(user, request, reviewer_id, reason)

    def _approve(self, user: User, request: VendorRequest, reviewer_id: str) -> User:
        now = _now_iso()
        previous = {name: getattr(user, name) for name in _USER_APPROVAL_FIELDS}

        def assign_role() -> None:
            call_provider(
                self.provider.assign_realm_roles,
                user.id,
                [Role.VENDOR],
                overrides={400: (400, "Failed to update user role in identity provider")},
            )

        def revoke_role(_: Any) -> None:
            self.provider.remove_realm_roles(user.id, [Role.VENDOR])

        saga = Saga("vendor_approval", failure_message="Vendor approval failed")
        saga.step("assign_provider_role", assign_role, revoke_role)
        saga.step(
            "update_user",
            lambda: self.users.update_user(
                user.id,
                role=Role.VENDOR,
                status=UserStatus.ACTIVE,
                vendor_request_status=REQUEST_APPROVED,
                vendor_approved_at=now,
                vendor_approved_by=reviewer_id,
            ),
            lambda _: self.users.update_user(user.id, **previous),
        )
        saga.step(
            "approve_request",
            lambda: self.vendors.update_request(
                user.id,
                status=REQUEST_APPROVED,
                reviewed_at=now,
                reviewed_by=reviewer_id,
                review_notes=APPROVAL_NOTES,
            ),
            lambda _: self.vendors.update_request(
                user.id, status=REQUEST_PENDING, reviewed_at=None, reviewed_by=None, review_notes=None
            ),
        )
        saga.step(
            "create_profile",
            lambda: self.vendors.create_profile(
                VendorProfile(
                    **{name: getattr(request, name) for name in BUSINESS_FIELDS},
                    user_id=user.id,
                    approved_at=now,
                    approved_by=reviewer_id,
                )
            ),
            lambda _: self.vendors.delete_profile(user.id),
        )
        saga.run()
        logger.info("Vendor %s approved by %s", user.id, reviewer_id)
        return self.users.get_by_id(user.id)

    def _reject(self, user: User, request: VendorRequest, reviewer_id: str, reason: Optional[str]) -> VendorRequest:
        self.vendors.update_request(
            user.id,
            status=REQUEST_REJECTED,
            reviewed_at=_now_iso(),
            reviewed_by=reviewer_id,
            review_notes=REJECTION_NOTES,
            rejection_reason=reason,
        )
        self.users.update_user(user.id, vendor_request_status=REQUEST_REJECTED)
        logger.info("Vendor %s rejected by %s", user.id, reviewer_id)
        return self.vendors.get_request_by_user(user.id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> VendorProfile:
        profile = self.vendors.get_profile_by_user(user_id)
        if profile is None:
            raise NotFoundError("Vendor profile not found")
        return profile

    def update_profile(self, user_id: str, changes: dict[str, Any]) -> VendorProfile:
        """Apply vendor self-service changes. Ownership and status fields and nulls are dropped."""
        self.get_profile(user_id)
        allowed = {k: v for k, v in changes.items() if k in PROFILE_SELF_SERVICE_FIELDS and v is not None}
        if allowed:
            self.vendors.update_profile(user_id, **allowed)
        return self.get_profile(user_id)

    def get_stats(self, user_id: str) -> dict[str, Any]:
        profile = self.get_profile(user_id)
        return {
            "businessName": profile.business_name,
            "status": profile.status,
            "isVerified": profile.is_verified,
            "approvedAt": profile.approved_at,
            "rating": {"average": profile.rating_average, "count": profile.rating_count},
            "stats": {
                "totalProducts": profile.total_products,
                "totalOrders": profile.total_orders,
                "totalRevenue": profile.total_revenue,
                "totalCustomers": profile.total_customers,
            },
        }

    def list_public(
        self, page: int = 1, limit: int = 10, search: Optional[str] = None, category: Optional[str] = None
    ) -> tuple[list[VendorProfile], int]:
        return self.vendors.list_active_profiles(search=search, category=category, offset=(page - 1) * limit, limit=limit)

    def get_public(self, profile_id: int) -> VendorProfile:
        profile = self.vendors.get_profile(profile_id)
        if profile is None or profile.status != PROFILE_ACTIVE:
            raise NotFoundError("Vendor not found")
        return profile

