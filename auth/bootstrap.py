"""
auth/bootstrap.py -- Provision privileged accounts and the first SuperAdmin.

provision_account() creates the identity-provider user and the local record
as one Saga, the same way registration does: if the local insert fails the
provider user is deleted again. The super-admin routes use it to create
Admins; init_super_admin() uses it once to seed the SuperAdmin that can
then log in and create everyone else.

Usage:
  storefront-init-super-admin --email root@example.com --password 'S3cure!pass'
  SUPER_ADMIN_EMAIL=root@example.com SUPER_ADMIN_PASSWORD=... storefront-init-super-admin

Running it again once a SuperAdmin exists does nothing.

Layer rule: no imports from api/, audit/, vendors/, or cache/.
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User, UserStatus
from auth.provider import IdentityProvider, build_identity_provider, call_provider
from auth.store import UserStore
from core.config import get_settings
from core.errors import AppError, ValidationError
from core.saga import Saga

logger = logging.getLogger("storefront.auth.bootstrap")

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DUPLICATE = "User with this email or username already exists"
_PROVISION_ERRORS = {
    409: (400, _DUPLICATE),
    400: (400, "Invalid user data"),
}


def provision_account(
    store: UserStore,
    provider: IdentityProvider,
    *,
    email: str,
    username: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str,
    email_verified: bool = False,
    failure_message: str = "Account creation failed",
) -> User:
    """Create a provider identity holding role plus the matching local user."""
    created: dict[str, str] = {}

    def create_identity() -> str:
        created["id"] = call_provider(
            provider.create_user,
            email=email,
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
            roles=[role],
            overrides=_PROVISION_ERRORS,
        )
        return created["id"]

    def create_local() -> User:
        try:
            return store.create_user(
                User(
                    id=created["id"],
                    email=email.lower(),
                    username=username,
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                    status=UserStatus.ACTIVE,
                    email_verified=email_verified,
                )
            )
        except IntegrityError as exc:
            raise ValidationError(_DUPLICATE) from exc

    saga = Saga(f"provision_{role.lower()}", failure_message=failure_message)
    saga.step("create_provider_identity", create_identity, lambda sid: provider.delete_user(sid))
    if email_verified:
        saga.step("mark_email_verified", lambda: call_provider(provider.set_email_verified, created["id"], True))
    saga.step("create_local_user", create_local)
    user: User = saga.run()["create_local_user"]
    logger.info("Provisioned %s account %s", role, user.id)
    return user


def init_super_admin(store: UserStore, provider: IdentityProvider, email: str, password: str) -> Optional[User]:
    """Create the first SuperAdmin. Returns None when one already exists.

    Raises ValueError for a malformed email or a password under 8 characters.
    """
    _, total = store.list_users(role=Role.SUPER_ADMIN, limit=1)
    if total:
        logger.info("SuperAdmin already exists; nothing to do")
        return None
    if not email or not _EMAIL_PATTERN.match(email):
        raise ValueError("A valid SuperAdmin email is required")
    if not password or len(password) < 8:
        raise ValueError("SuperAdmin password must be at least 8 characters long")

    return provision_account(
        store,
        provider,
        email=email.lower(),
        username=email.lower(),
        password=password,
        first_name="Super",
        last_name="Admin",
        role=Role.SUPER_ADMIN,
        email_verified=True,
        failure_message="SuperAdmin creation failed",
    )


def main(argv: Optional[list[str]] = None) -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="storefront-init-super-admin",
        description="Create the first SuperAdmin account. Does nothing if one already exists.",
    )
    parser.add_argument(
        "--email",
        default=settings.super_admin_email,
        help="SuperAdmin email (default: SUPER_ADMIN_EMAIL)",
    )
    parser.add_argument(
        "--password",
        default=settings.super_admin_password,
        help="SuperAdmin password, at least 8 characters (default: SUPER_ADMIN_PASSWORD)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = UserStore(settings.user_db_url)
    try:
        user = init_super_admin(store, build_identity_provider(settings), args.email, args.password)
    except (ValueError, AppError) as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.close()

    if user is None:
        print("SuperAdmin already exists.")
    else:
        print(f"SuperAdmin created: {user.email} (id {user.id})")


if __name__ == "__main__":
    main()
