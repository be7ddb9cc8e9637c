"""
api/routes/users.py -- Stored user profile endpoints.

Routes:
  GET /api/users/{userId}  -- stored profile
  PUT /api/users/{userId}  -- update firstName, lastName, phone (null leaves a field as is)

Both require a bearer token; a non-admin may only address their own userId.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import UserOut, UserUpdateRequest, success
from auth.dependencies import require_ownership_or_admin
from auth.models import Identity
from core.errors import NotFoundError

logger = logging.getLogger("storefront.api.users")

router = APIRouter()


@router.get("/{userId}")
def get_user(userId: str, request: Request, identity: Identity = Depends(require_ownership_or_admin())) -> dict:
    user = request.app.state.user_store.get_by_id(userId)
    if user is None:
        raise NotFoundError("User not found")
    return success(UserOut.model_validate(user))


@router.put("/{userId}")
def update_user(
    userId: str,
    body: UserUpdateRequest,
    request: Request,
    identity: Identity = Depends(require_ownership_or_admin()),
) -> dict:
    store = request.app.state.user_store
    if store.get_by_id(userId) is None:
        raise NotFoundError("User not found")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if changes:
        store.update_user(userId, **changes)
        logger.info("User %s updated by %s: %s", userId, identity.subject_id, sorted(changes))
    return success(UserOut.model_validate(store.get_by_id(userId)), "User updated successfully")
