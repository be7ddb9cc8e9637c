"""
api/routes/vendor.py -- Vendor onboarding and directory endpoints.

Routes:
  POST /api/vendor/request              -- Customer applies for vendor status (201)
  GET  /api/vendor/request/status       -- own request (Customer or Vendor)
  GET  /api/vendor/profile              -- own vendor profile (Vendor)
  PUT  /api/vendor/profile              -- self-service profile update (Vendor)
  GET  /api/vendor/stats                -- own rating and sales counters (Vendor)
  GET  /api/vendor/public               -- active vendors, paginated, no auth
  GET  /api/vendor/public/{vendorId}    -- one active vendor, no auth

Business rules live in vendors/workflow.py; handlers only translate between
HTTP and the workflow.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    Pagination,
    VendorProfileOut,
    VendorProfileUpdate,
    VendorRequestCreate,
    VendorRequestOut,
    success,
)
from auth.dependencies import require_customer, require_customer_or_vendor, require_vendor
from auth.models import Identity

router = APIRouter()


@router.post("/request", status_code=201)
def submit_request(
    body: VendorRequestCreate,
    request: Request,
    identity: Identity = Depends(require_customer),
) -> dict:
    vendor_request = request.app.state.workflow.submit_request(identity, body.model_dump())
    return success(
        VendorRequestOut.model_validate(vendor_request),
        "Vendor request submitted successfully. Waiting for admin approval.",
    )


@router.get("/request/status")
def request_status(request: Request, identity: Identity = Depends(require_customer_or_vendor)) -> dict:
    vendor_request = request.app.state.workflow.get_request(identity.subject_id)
    return success(VendorRequestOut.model_validate(vendor_request))


@router.get("/profile")
def get_profile(request: Request, identity: Identity = Depends(require_vendor)) -> dict:
    profile = request.app.state.workflow.get_profile(identity.subject_id)
    return success(VendorProfileOut.from_profile(profile))


@router.put("/profile")
def update_profile(
    body: VendorProfileUpdate,
    request: Request,
    identity: Identity = Depends(require_vendor),
) -> dict:
    profile = request.app.state.workflow.update_profile(
        identity.subject_id, body.model_dump(exclude_unset=True, exclude_none=True)
    )
    return success(VendorProfileOut.from_profile(profile), "Vendor profile updated successfully")


@router.get("/stats")
def get_stats(request: Request, identity: Identity = Depends(require_vendor)) -> dict:
    return success(request.app.state.workflow.get_stats(identity.subject_id))


@router.get("/public")
def list_public(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
) -> dict:
    profiles, total = request.app.state.workflow.list_public(page, limit, search=search, category=category)
    return success(
        [VendorProfileOut.from_profile(p, public=True) for p in profiles],
        pagination=Pagination.of(page, limit, total),
    )


@router.get("/public/{vendorId}")
def get_public(vendorId: int, request: Request) -> dict:
    profile = request.app.state.workflow.get_public(vendorId)
    return success(VendorProfileOut.from_profile(profile, public=True))
