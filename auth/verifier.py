"""
auth/verifier.py -- Bearer token verification strategies.

The strategy is chosen once at startup by build_verifier(settings):

  development, no client secret  -> LocalDecodeVerifier(permissive=True)
      claims decoded without signature checks; anything missing is filled
      with a mock identity so a frontend can run with no provider at all.
  SKIP_USERINFO=true             -> LocalDecodeVerifier(permissive=False)
      claims decoded without signature checks; nothing synthesized.
  otherwise                      -> RemoteVerifier
      token presented to the provider's userinfo endpoint; claims decoded
      only after the provider accepts it. In development the verifier
      falls back to a permissive local decode when the provider refuses
      the connection.

TokenAuthenticator puts the Token Cache in front of whichever strategy is
active: absent token -> 401, cache hit -> cached Identity, else verify and
cache.

Layer rule: no imports from api/, audit/, or vendors/.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import requests
from jose import JWTError

from auth.models import Identity, Role
from auth.provider import ProviderError, map_provider_error
from auth.tokens import decode_unverified_claims
from cache.store import TokenCache
from core.config import Settings
from core.errors import AuthenticationError

logger = logging.getLogger("storefront.auth.verifier")

MOCK_IDENTITY_DEFAULTS = {
    "sub": "mock-user-id",
    "email": "mock@example.com",
    "preferred_username": "mockuser",
    "roles": [Role.CUSTOMER],
}

DEV_FALLBACK_DEFAULTS = {
    "sub": "dev-user-id",
    "email": "dev@example.com",
    "preferred_username": "devuser",
    "roles": [Role.CUSTOMER],
}


def identity_from_claims(claims: dict, token: str, defaults: Optional[dict] = None) -> Identity:
    """Build an Identity from Keycloak-shaped claims.

    Roles come from realm_access.roles; username from preferred_username.
    defaults fills in missing fields (permissive mode only).
    """
    defaults = defaults or {}
    realm_access = claims.get("realm_access") or {}
    roles = realm_access.get("roles") or defaults.get("roles") or []
    return Identity(
        subject_id=claims.get("sub") or defaults.get("sub", ""),
        email=claims.get("email") or defaults.get("email", ""),
        username=claims.get("preferred_username") or defaults.get("preferred_username", ""),
        roles=frozenset(roles),
        raw_token=token,
        first_name=claims.get("given_name", ""),
        last_name=claims.get("family_name", ""),
        email_verified=bool(claims.get("email_verified", False)),
    )


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Identity: ...


class LocalDecodeVerifier:
    """Decode claims locally. No signature or revocation check."""

    def __init__(self, permissive: bool = False, defaults: Optional[dict] = None) -> None:
        self.permissive = permissive
        self.defaults = defaults if defaults is not None else MOCK_IDENTITY_DEFAULTS

    def verify(self, token: str) -> Identity:
        try:
            claims = decode_unverified_claims(token)
        except JWTError as exc:
            if not self.permissive:
                raise AuthenticationError("Invalid token") from exc
            claims = {}
        if not self.permissive:
            exp = claims.get("exp")
            if exp is not None and exp < time.time():
                raise AuthenticationError("Token has expired")
            if not claims.get("sub"):
                raise AuthenticationError("Invalid token")
            return identity_from_claims(claims, token)
        return identity_from_claims(claims, token, self.defaults)


class RemoteVerifier:
    """Ask the provider's userinfo endpoint whether the token is still good."""

    def __init__(
        self,
        userinfo_url: str,
        timeout: float = 5.0,
        http: Optional[requests.Session] = None,
        fallback: Optional[TokenVerifier] = None,
    ) -> None:
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self._http = http or requests.Session()
        self._fallback = fallback

    def verify(self, token: str) -> Identity:
        try:
            resp = self._http.get(
                self.userinfo_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            if self._fallback is not None:
                logger.warning("Userinfo endpoint unreachable, using development fallback decode: %s", exc)
                return self._fallback.verify(token)
            logger.error("Userinfo endpoint unreachable: %s", exc)
            raise map_provider_error(ProviderError(None, "unreachable", str(exc))) from exc

        if resp.status_code >= 400:
            logger.info("Userinfo rejected token with status %d", resp.status_code)
            raise map_provider_error(ProviderError(resp.status_code))

        try:
            claims = decode_unverified_claims(token)
        except JWTError as exc:
            raise AuthenticationError("Invalid token") from exc
        try:
            userinfo = resp.json()
        except ValueError:
            userinfo = {}
        # userinfo is authoritative for profile fields; roles only live in the token.
        merged = {**claims, **{k: v for k, v in userinfo.items() if k != "realm_access"}}
        return identity_from_claims(merged, token)


class TokenAuthenticator:
    def __init__(self, verifier: TokenVerifier, cache: TokenCache) -> None:
        self.verifier = verifier
        self.cache = cache

    def authenticate(self, token: Optional[str]) -> Identity:
        if not token:
            raise AuthenticationError("Access token is required")
        cached = self.cache.get(token)
        if cached is not None:
            return cached
        identity = self.verifier.verify(token)
        self.cache.put(token, identity)
        return identity


def build_verifier(settings: Settings) -> TokenVerifier:
    if settings.is_development and not settings.keycloak_client_secret:
        logger.warning("Development mode without provider credentials -- tokens are decoded permissively")
        return LocalDecodeVerifier(permissive=True)
    if settings.skip_userinfo:
        logger.warning("SKIP_USERINFO is set -- tokens are decoded without provider verification")
        return LocalDecodeVerifier(permissive=False)
    fallback = LocalDecodeVerifier(permissive=True, defaults=DEV_FALLBACK_DEFAULTS) if settings.is_development else None
    return RemoteVerifier(
        f"{settings.keycloak_realm_url}/protocol/openid-connect/userinfo",
        timeout=settings.userinfo_timeout_seconds,
        fallback=fallback,
    )
