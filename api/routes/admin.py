"""
api/routes/admin.py -- Administration endpoints.

Routes:
  GET    /api/admin/audit/logs                  -- query the audit log
  GET    /api/admin/monitoring/health           -- Auth Monitor health
  GET    /api/admin/monitoring/report?hours=N   -- Auth Monitor report (default 24h)
  GET    /api/admin/stats                       -- user counts by role, status, verification
  GET    /api/admin/users                       -- paginated user list
  PUT    /api/admin/users/{userId}/role         -- set role to Customer or Vendor
  DELETE /api/admin/users/{userId}              -- delete a user
  GET    /api/admin/vendors/pending             -- pending vendor requests
  PUT    /api/admin/vendors/{userId}/approve    -- approve or reject a request

Access:
  Everything except the monitoring pair requires Admin or SuperAdmin.
  The monitoring pair requires a bearer token only.
  SuperAdmin accounts cannot be deleted through the API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    Pagination,
    RoleUpdateRequest,
    UserOut,
    VendorApprovalRequest,
    VendorRequestOut,
    success,
)
from auth.dependencies import get_identity, require_admin_or_super_admin
from auth.models import Identity, Role, UserStatus
from auth.provider import call_provider
from core.errors import AuthorizationError, NotFoundError

logger = logging.getLogger("storefront.api.admin")

router = APIRouter()

_RECENT_DAYS = 30


def system_stats(store) -> dict:
    """User counts for the admin dashboards. verificationRate is a percentage."""
    since = (datetime.now(timezone.utc) - timedelta(days=_RECENT_DAYS)).isoformat()
    counts = store.stats(since)
    total = counts["total"]
    active = counts["by_status"].get(UserStatus.ACTIVE, 0)
    verified = counts["verified"]
    return {
        "totalUsers": total,
        "totalAdmins": counts["by_role"].get(Role.ADMIN, 0),
        "totalSuperAdmins": counts["by_role"].get(Role.SUPER_ADMIN, 0),
        "activeUsers": active,
        "inactiveUsers": total - active,
        "recentRegistrations": counts["recent"],
        "verifiedUsers": verified,
        "unverifiedUsers": total - verified,
        "verificationRate": round(verified / total * 100, 2) if total else 0,
        "usersByStatus": counts["by_status"],
        "usersByRole": counts["by_role"],
    }


# ---------------------------------------------------------------------------
# Audit & monitoring
# ---------------------------------------------------------------------------


@router.get("/audit/logs")
def audit_logs(
    request: Request,
    event_type: Optional[str] = Query(default=None, alias="eventType"),
    severity: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    ip: Optional[str] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=1000),
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    entries = request.app.state.audit.query(
        event_type=event_type,
        severity=severity,
        user_id=user_id,
        ip=ip,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return success(entries)


@router.get("/monitoring/health")
def monitoring_health(request: Request, identity: Identity = Depends(get_identity)) -> dict:
    return success(
        {
            "authMonitor": request.app.state.monitor.get_health_status(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@router.get("/monitoring/report")
def monitoring_report(
    request: Request,
    hours: int = Query(default=24, ge=1, le=7 * 24),
    identity: Identity = Depends(get_identity),
) -> dict:
    return success(request.app.state.monitor.generate_report(hours * 60 * 60))


@router.get("/stats")
def stats(request: Request, identity: Identity = Depends(require_admin_or_super_admin)) -> dict:
    return success(system_stats(request.app.state.user_store))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users")
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    role: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    users, total = request.app.state.user_store.list_users(
        role=role, status=status, offset=(page - 1) * limit, limit=limit
    )
    return success(
        [UserOut.model_validate(u) for u in users],
        pagination=Pagination.of(page, limit, total),
    )


@router.put("/users/{userId}/role")
def update_user_role(
    userId: str,
    body: RoleUpdateRequest,
    request: Request,
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    state = request.app.state
    user = state.user_store.get_by_id(userId)
    if user is None:
        raise NotFoundError("User not found")

    if user.role != body.role:
        call_provider(state.provider.assign_realm_roles, userId, [body.role])
        if user.role in (Role.CUSTOMER, Role.VENDOR):
            call_provider(state.provider.remove_realm_roles, userId, [user.role])
        state.user_store.update_user(userId, role=body.role)
        logger.info("User %s role changed %s -> %s by %s", userId, user.role, body.role, identity.subject_id)
    return success(UserOut.model_validate(state.user_store.get_by_id(userId)), "User role updated successfully")


@router.delete("/users/{userId}")
def delete_user(
    userId: str,
    request: Request,
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    state = request.app.state
    user = state.user_store.get_by_id(userId)
    if user is None:
        raise NotFoundError("User not found")
    if user.role == Role.SUPER_ADMIN:
        raise AuthorizationError("Cannot delete SuperAdmin users")

    call_provider(state.provider.delete_user, userId)
    state.user_store.delete_user(userId)
    logger.info("User %s deleted by %s", userId, identity.subject_id)
    return success(message="User deleted successfully")


# ---------------------------------------------------------------------------
# Vendor onboarding
# ---------------------------------------------------------------------------


@router.get("/vendors/pending")
def pending_vendors(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    requests_, total = request.app.state.workflow.list_pending(page, limit)
    return success(
        [VendorRequestOut.model_validate(r) for r in requests_],
        pagination=Pagination.of(page, limit, total),
    )


@router.put("/vendors/{userId}/approve")
def review_vendor(
    userId: str,
    body: VendorApprovalRequest,
    request: Request,
    identity: Identity = Depends(require_admin_or_super_admin),
) -> dict:
    result = request.app.state.workflow.review(userId, body.approved, identity.subject_id, body.reason)
    if body.approved:
        return success(UserOut.model_validate(result), "Vendor approved successfully")
    return success(VendorRequestOut.model_validate(result), "Vendor application rejected")
