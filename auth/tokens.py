"""
auth/tokens.py -- Password hashing, single-use tokens, and claim decoding.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Only the simulated
       identity provider stores passwords; a real Keycloak deployment never
       hands them to this service.

  Email verification: python-jose HS256 JWT signed with SECRET_KEY carrying
       {userId, email, purpose: "email_verification"}; expiry from settings
       (12 hours by default).
       The purpose claim stops a verification token being replayed as any
       other kind of token.

  Password reset: secrets.token_hex(32) gives 256 bits of entropy. Only
       HMAC-SHA256(SECRET_KEY, raw_token) is persisted, so a leaked users table
       does not leak usable reset links. Tokens expire after 1 hour by default.

  Access tokens issued by the identity provider are decoded here WITHOUT
       signature verification (decode_unverified_claims). Callers only do that
       after the provider has vouched for the token or when running in the
       explicit local-decode mode.

Layer rule: no imports from api/, audit/, vendors/, or cache/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import Settings
from core.errors import ValidationError

logger = logging.getLogger("storefront.auth")

_ALGORITHM = "HS256"
EMAIL_VERIFICATION_PURPOSE = "email_verification"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Input is cut to 72 bytes first; bcrypt>=4.1 raises on longer input.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# Email verification tokens
# ---------------------------------------------------------------------------


def create_email_verification_token(settings: Settings, user_id: str, email: str) -> str:
    payload = {
        "userId": user_id,
        "email": email,
        "purpose": EMAIL_VERIFICATION_PURPOSE,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=settings.email_verification_expire_seconds),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_email_verification_token(settings: Settings, token: str) -> dict:
    """Verify signature, expiry, and purpose. Returns the payload.

    Raises ValidationError (400) on any failure; the verify-email route has no
    authenticated user to fall back on, so a bad token is a bad request.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ValidationError("Verification token has expired") from exc
    except JWTError as exc:
        raise ValidationError("Invalid verification token") from exc
    if payload.get("purpose") != EMAIL_VERIFICATION_PURPOSE or "userId" not in payload:
        raise ValidationError("Invalid verification token")
    return payload


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def hash_reset_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def generate_reset_token(settings: Settings) -> tuple[str, str, str]:
    """Return (raw_token, token_hash, expires_at_iso).

    The raw token goes to the user by email and is never stored.
    """
    raw = secrets.token_hex(32)
    expires = datetime.now(timezone.utc) + timedelta(seconds=settings.password_reset_expire_seconds)
    return raw, hash_reset_token(settings.secret_key, raw), expires.isoformat()


# ---------------------------------------------------------------------------
# Provider access tokens
# ---------------------------------------------------------------------------


def decode_unverified_claims(token: str) -> dict:
    """Return the claims of a JWT without checking its signature.

    Raises jose.JWTError if the token is not a decodable JWT.
    """
    return jwt.get_unverified_claims(token)
