"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

get_identity() resolves the bearer token through app.state.authenticator
(Token Cache in front of the configured verification strategy) and returns
the verified Identity. Every other helper builds on it.

Role checks are plain set membership with no hierarchy: SuperAdmin passes
only the checks that list it. The named guards below spell out which routes
accept which roles:

    require_customer, require_vendor, require_admin, require_super_admin,
    require_admin_or_super_admin, require_customer_or_vendor

require_ownership_or_admin(field) lets Admin/SuperAdmin through and otherwise
demands that the acting identity owns the resource. The owner id is looked
up in the userId path parameter, then body[field], then the userId query
parameter.

authorize() and is_owner_or_admin() are the pure checks; the dependency
factories only wire them into FastAPI.

Layer rule: no imports from audit/, vendors/, or cache/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from typing import Any, Optional

from fastapi import Depends, Request

from auth.models import Identity, Role
from core.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("storefront.auth")

ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_identity(request: Request) -> Identity:
    """Require a valid bearer token. Raises 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    identity = request.app.state.authenticator.authenticate(bearer_token(request))
    request.state.identity = identity
    return identity


# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------


def authorize(identity: Optional[Identity], roles: Iterable[str]) -> Identity:
    """Return identity if it holds any of roles; raise 401/403 otherwise."""
    roles = tuple(roles)
    if identity is None:
        raise AuthenticationError("Authentication required")
    if identity.roles.isdisjoint(roles):
        if len(roles) == 1:
            message = f"Access denied. {roles[0]} role required."
        else:
            message = f"Access denied. One of the following roles required: {', '.join(roles)}"
        logger.info("Role check failed for %s: needs %s, has %s", identity.subject_id, roles, sorted(identity.roles))
        raise AuthorizationError(message, details={"required": list(roles)})
    return identity


def is_owner_or_admin(identity: Identity, owner_id: Optional[str]) -> bool:
    """Admins always pass; otherwise a present owner_id must match the identity.

    An owner_id of None means the request names no owner, which passes.
    """
    if not identity.roles.isdisjoint(ADMIN_ROLES):
        return True
    return owner_id is None or str(owner_id) == identity.subject_id


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def require_any_role(*roles: str) -> Callable[..., Identity]:
    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return authorize(identity, roles)

    dependency.__name__ = f"require_any_role_{'_'.join(r.lower() for r in roles)}"
    return dependency


def require_role(role: str) -> Callable[..., Identity]:
    return require_any_role(role)


require_customer = require_role(Role.CUSTOMER)
require_vendor = require_role(Role.VENDOR)
require_admin = require_role(Role.ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)
require_admin_or_super_admin = require_any_role(Role.ADMIN, Role.SUPER_ADMIN)
require_customer_or_vendor = require_any_role(Role.CUSTOMER, Role.VENDOR)


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def require_ownership_or_admin(field: str = "userId") -> Callable[..., Any]:
    async def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        if not identity.roles.isdisjoint(ADMIN_ROLES):
            return identity
        owner_id = request.path_params.get("userId")
        if owner_id is None:
            body = await _json_body(request)
            if isinstance(body, dict):
                owner_id = body.get(field)
        if owner_id is None:
            owner_id = request.query_params.get("userId")
        if not is_owner_or_admin(identity, owner_id):
            raise AuthorizationError("Access denied. You can only access your own resources.")
        return identity

    return dependency
