"""
api/routes/super_admin.py -- SuperAdmin-only management of Admin accounts.

Routes:
  POST   /api/super-admin/admins                          -- create an Admin (201)
  GET    /api/super-admin/admins                          -- paginated Admin list
  DELETE /api/super-admin/admins/{adminId}                -- delete an Admin
  PUT    /api/super-admin/admins/{adminId}/status         -- activate or deactivate
  POST   /api/super-admin/admins/{adminId}/reset-password -- set a new password
  GET    /api/super-admin/advanced-stats                  -- user counts
  GET    /api/super-admin/audit-log                       -- paginated audit log

Access:
  Every route requires the SuperAdmin role. These handlers act on Admin
  accounts only; a target holding any other role is refused.
  Each change is written to the audit log as an ADMIN_ACTION entry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AdminCreateRequest,
    AdminPasswordResetRequest,
    AdminStatusRequest,
    Pagination,
    UserOut,
    success,
)
from api.routes.admin import system_stats
from api.routes.auth import client_info
from auth.bootstrap import provision_account
from auth.dependencies import require_super_admin
from auth.models import Identity, Role, User, UserStatus
from auth.provider import call_provider
from core.errors import NotFoundError, ValidationError

logger = logging.getLogger("storefront.api.super_admin")

router = APIRouter()


def _admin_or_404(request: Request, admin_id: str) -> User:
    user = request.app.state.user_store.get_by_id(admin_id)
    if user is None or user.role != Role.ADMIN:
        raise NotFoundError("Admin not found")
    return user


# ---------------------------------------------------------------------------
# Admin accounts
# ---------------------------------------------------------------------------


@router.post("/admins", status_code=201)
def create_admin(
    request: Request,
    body: AdminCreateRequest,
    identity: Identity = Depends(require_super_admin),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    user = provision_account(
        state.user_store,
        state.provider,
        email=body.email,
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=Role.ADMIN,
        failure_message="Admin creation failed",
    )
    state.audit.log_admin_action("ADMIN_CREATED", identity.subject_id, user.id, ip, {"email": user.email})
    return success(UserOut.model_validate(user), "Admin created successfully")


@router.get("/admins")
def list_admins(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(require_super_admin),
) -> dict:
    admins, total = request.app.state.user_store.list_users(
        role=Role.ADMIN, offset=(page - 1) * limit, limit=limit
    )
    return success(
        [UserOut.model_validate(u) for u in admins],
        pagination=Pagination.of(page, limit, total),
    )


@router.delete("/admins/{adminId}")
def delete_admin(
    adminId: str,
    request: Request,
    identity: Identity = Depends(require_super_admin),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    user = state.user_store.get_by_id(adminId)
    if user is None:
        raise NotFoundError("Admin not found")
    if user.role != Role.ADMIN:
        raise ValidationError("User is not an Admin")

    call_provider(state.provider.delete_user, adminId)
    state.user_store.delete_user(adminId)
    state.audit.log_admin_action("ADMIN_DELETED", identity.subject_id, adminId, ip, {"email": user.email})
    logger.info("Admin %s deleted by %s", adminId, identity.subject_id)
    return success(message="Admin deleted successfully")


@router.put("/admins/{adminId}/status")
def set_admin_status(
    adminId: str,
    body: AdminStatusRequest,
    request: Request,
    identity: Identity = Depends(require_super_admin),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    _admin_or_404(request, adminId)

    state.user_store.update_user(adminId, status=body.status)
    state.audit.log_admin_action(
        "ADMIN_STATUS_CHANGED", identity.subject_id, adminId, ip, {"status": body.status}
    )
    verb = "activated" if body.status == UserStatus.ACTIVE else "deactivated"
    return success(UserOut.model_validate(state.user_store.get_by_id(adminId)), f"Admin {verb} successfully")


@router.post("/admins/{adminId}/reset-password")
def reset_admin_password(
    adminId: str,
    body: AdminPasswordResetRequest,
    request: Request,
    identity: Identity = Depends(require_super_admin),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    _admin_or_404(request, adminId)

    call_provider(state.provider.set_password, adminId, body.new_password)
    state.audit.log_admin_action("ADMIN_PASSWORD_RESET", identity.subject_id, adminId, ip)
    return success(message="Admin password reset successfully")


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@router.get("/advanced-stats")
def advanced_stats(request: Request, identity: Identity = Depends(require_super_admin)) -> dict:
    return success(system_stats(request.app.state.user_store))


@router.get("/audit-log")
def audit_log(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=1000),
    action: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    identity: Identity = Depends(require_super_admin),
) -> dict:
    """action filters on eventType, e.g. ADMIN_ACTION or LOGIN_FAILURE."""
    entries = request.app.state.audit.query(
        event_type=action,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=None,
    )
    start = (page - 1) * limit
    return success(entries[start : start + limit], pagination=Pagination.of(page, limit, len(entries)))
