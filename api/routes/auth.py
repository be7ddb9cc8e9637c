"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/auth/login            -- password grant against the identity provider
  POST /api/auth/register         -- create a Customer identity + local record (201)
  POST /api/auth/refresh          -- refresh-token grant
  POST /api/auth/logout           -- revoke refresh token, evict cached access token
  GET  /api/auth/profile          -- verified identity merged with the stored user
  PUT  /api/auth/change-password  -- re-authenticate with current password, set new
  POST /api/auth/forgot-password  -- issue a reset token by email (always 200)
  POST /api/auth/reset-password   -- consume a reset token
  POST /api/auth/verify-email     -- consume an email verification token

Security:
  Login, forgot-password and reset-password share the auth rate limit;
  register and refresh have their own; verify-email uses the general API limit.
  Every login failure is audited and fed to the Auth Monitor; a success resets
  the (ip, email) failure counter.
  Registration is a Saga: the provider identity is deleted again if the local
  record cannot be written.
  Forgot-password answers identically whether or not the email exists.
  Cache-Control: no-store on responses that carry tokens.

Handlers are sync (def) because the provider client blocks; Starlette runs
them in its thread pool.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from jose import JWTError
from sqlalchemy.exc import IntegrityError

from api.limiter import api_limit, auth_limit, refresh_limit, registration_limit
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserOut,
    VerifyEmailRequest,
    success,
)
from auth.dependencies import get_identity
from auth.models import Identity, Role, User, UserStatus
from auth.provider import ProviderError, call_provider, map_provider_error
from auth.tokens import (
    create_email_verification_token,
    decode_email_verification_token,
    decode_unverified_claims,
    generate_reset_token,
    hash_reset_token,
)
from core.errors import AuthenticationError, NotFoundError, ValidationError
from core.saga import Saga

logger = logging.getLogger("storefront.api.auth")

router = APIRouter()

_LOGIN_ERRORS = {
    401: (401, "Invalid email or password"),
    400: (400, "Invalid login request"),
}
_REFRESH_ERRORS = {
    400: (400, "Invalid or expired refresh token"),
    401: (401, "Invalid or expired refresh token"),
}
_REGISTER_ERRORS = {
    409: (400, "User with this email or username already exists"),
    400: (400, "Invalid registration data"),
}
_FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def client_info(request: Request) -> tuple[str, str]:
    ip = request.client.host if request.client else "unknown"
    return ip, request.headers.get("User-Agent", "")


def _token_response(body: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=body)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _subject_of(access_token: str) -> str | None:
    try:
        return decode_unverified_claims(access_token).get("sub")
    except JWTError:
        return None


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/login", dependencies=[Depends(auth_limit)])
def login(request: Request, body: LoginRequest) -> JSONResponse:
    state = request.app.state
    ip, user_agent = client_info(request)
    state.audit.log_login_attempt(body.email, ip, user_agent)

    try:
        tokens = state.provider.password_grant(body.email, body.password)
    except ProviderError as exc:
        error = map_provider_error(exc, _LOGIN_ERRORS)
        state.audit.log_login_failure(body.email, ip, user_agent, error.message)
        state.monitor.track_login_failure(ip, body.email, error.message)
        raise error from exc

    state.monitor.reset_failure_count(ip, body.email)
    subject_id = _subject_of(tokens["access_token"])
    if subject_id and state.user_store.get_by_id(subject_id) is not None:
        state.user_store.update_last_login(subject_id)
    state.audit.log_login_success(subject_id or "", body.email, ip, user_agent)
    logger.info("Login successful for %s from %s", body.email, ip)
    return _token_response(success(TokenResponse.model_validate(tokens), "Login successful"))


@router.post("/register", status_code=201, dependencies=[Depends(registration_limit)])
def register(request: Request, body: RegisterRequest) -> dict:
    state = request.app.state
    ip, user_agent = client_info(request)
    if state.user_store.get_by_email(body.email) is not None:
        raise ValidationError("User with this email or username already exists")

    created: dict[str, str] = {}

    def create_identity() -> str:
        created["id"] = call_provider(
            state.provider.create_user,
            email=body.email,
            username=body.username,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
            roles=[Role.CUSTOMER],
            overrides=_REGISTER_ERRORS,
        )
        return created["id"]

    def create_local() -> User:
        try:
            return state.user_store.create_user(
                User(
                    id=created["id"],
                    email=body.email,
                    username=body.username,
                    first_name=body.first_name,
                    last_name=body.last_name,
                    phone=body.phone,
                    role=Role.CUSTOMER,
                    status=UserStatus.ACTIVE,
                    email_verified=False,
                )
            )
        except IntegrityError as exc:
            raise ValidationError("User with this email or username already exists") from exc

    saga = Saga("registration", failure_message="Registration failed")
    saga.step("create_provider_identity", create_identity, lambda sid: state.provider.delete_user(sid))
    saga.step("create_local_user", create_local)
    user: User = saga.run()["create_local_user"]

    token = create_email_verification_token(state.settings, user.id, user.email)
    if not state.email.send_verification_email(user.email, user.first_name, token):
        logger.warning("Verification email to user %s was not sent", user.id)
    state.audit.log_registration(user.id, user.email, ip, user_agent)
    logger.info("User %s registered as Customer", user.id)
    return success(
        UserOut.model_validate(user),
        "User registered successfully as Customer. Please check your email to verify your account.",
    )


@router.post("/refresh", dependencies=[Depends(refresh_limit)])
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    state = request.app.state
    ip, _ = client_info(request)
    tokens = call_provider(state.provider.refresh, body.refresh_token, overrides=_REFRESH_ERRORS)
    state.audit.log_token_refresh(ip, _subject_of(tokens["access_token"]))
    return _token_response(success(TokenResponse.model_validate(tokens), "Token refreshed successfully"))


@router.post("/forgot-password", dependencies=[Depends(auth_limit)])
def forgot_password(request: Request, body: ForgotPasswordRequest) -> dict:
    state = request.app.state
    user = state.user_store.get_by_email(body.email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return success(message=_FORGOT_PASSWORD_MESSAGE)

    raw_token, token_hash, expires_at = generate_reset_token(state.settings)
    state.user_store.update_user(user.id, reset_token_hash=token_hash, reset_token_expires=expires_at)
    if not state.email.send_password_reset_email(user.email, user.first_name, raw_token):
        logger.warning("Password reset email to user %s was not sent", user.id)

    data = {"resetToken": raw_token} if state.settings.is_development else None
    return success(data, _FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", dependencies=[Depends(auth_limit)])
def reset_password(request: Request, body: ResetPasswordRequest) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    user = state.user_store.get_by_reset_token_hash(hash_reset_token(state.settings.secret_key, body.token))
    if user is None:
        raise ValidationError("Invalid or expired reset token")

    call_provider(state.provider.set_password, user.id, body.new_password)
    state.user_store.update_user(user.id, reset_token_hash=None, reset_token_expires=None)
    state.audit.log_password_reset(user.id, ip)
    return success(message="Password reset successfully")


@router.post("/verify-email", dependencies=[Depends(api_limit)])
def verify_email(request: Request, body: VerifyEmailRequest) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    payload = decode_email_verification_token(state.settings, body.token)
    user = state.user_store.get_by_id(payload["userId"])
    if user is None:
        raise NotFoundError("User not found")
    if user.email_verified:
        return success(message="Email already verified")

    call_provider(state.provider.set_email_verified, user.id, True)
    state.user_store.update_user(user.id, email_verified=True)
    state.audit.log_email_verification(user.id, ip)
    return success(message="Email verified successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    identity: Identity = Depends(get_identity),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    if body is not None and body.refresh_token:
        state.provider.logout(body.refresh_token)
    state.token_cache.invalidate(identity.raw_token)
    state.audit.log_logout(identity.subject_id, ip)
    return success(message="Logout successful")


@router.get("/profile")
def profile(request: Request, identity: Identity = Depends(get_identity)) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    user = state.user_store.get_by_id(identity.subject_id)
    if user is None:
        raise AuthenticationError("Failed to retrieve user profile")
    state.audit.log_profile_access(identity.subject_id, ip)
    return success(
        {
            "id": identity.subject_id,
            "email": identity.email,
            "username": identity.username,
            "roles": sorted(identity.roles),
            **UserOut.model_validate(user).model_dump(by_alias=True),
        }
    )


@router.put("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
) -> dict:
    state = request.app.state
    ip, _ = client_info(request)
    call_provider(
        state.provider.password_grant,
        identity.email,
        body.current_password,
        overrides={401: (401, "Current password is incorrect"), 400: (401, "Current password is incorrect")},
    )
    call_provider(state.provider.set_password, identity.subject_id, body.new_password)
    state.audit.log_password_change(identity.subject_id, ip)
    return success(message="Password changed successfully")
