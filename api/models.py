"""
API request and response models for Storefront REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
vendors/models.py, which own the internal domain representation. Route
handlers map between the two.

Wire format is camelCase (firstName, businessName, refreshToken); Python
attributes stay snake_case. CamelModel does the translation both ways, so
handlers can pass either spelling when building a model.

Validation rules (raise ValueError -> 400 with the message below):
  email      ^[^\\s@]+@[^\\s@]+\\.[^\\s@]+$, lowercased
  password   8-128 chars, not a well-known weak password
  new/registration password additionally needs upper, lower, and digit
  username   3-30 of [a-zA-Z0-9_-]; defaults to the email when omitted
  names      2-50 of letters, spaces, hyphens, apostrophes
  phone      E.164-ish, optional
"""

from __future__ import annotations

import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, UserStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
STRONG_PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)[a-zA-Z\d@$!%*?&#]{8,}$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,30}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-']+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")
WEAK_PASSWORDS = frozenset({"password", "12345678", "qwerty", "abc123", "password123"})


# ---------------------------------------------------------------------------
# Reusable checks
# ---------------------------------------------------------------------------


def check_email(value: str, field: str = "email") -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValueError(f"Please provide a valid {field} address")
    return value.lower()


def check_password(value: str, field: str = "password") -> str:
    if len(value) < 8:
        raise ValueError(f"{field} must be at least 8 characters long")
    if len(value) > 128:
        raise ValueError(f"{field} must be less than 128 characters long")
    if value.lower() in WEAK_PASSWORDS:
        raise ValueError(f"{field} is too weak. Please choose a stronger password")
    return value


def check_strong_password(value: str, field: str = "password") -> str:
    check_password(value, field)
    if not STRONG_PASSWORD_PATTERN.match(value):
        raise ValueError(
            f"{field} must contain at least one uppercase letter, one lowercase letter, "
            "one number, and may include special characters (@$!%*?&#)"
        )
    return value


def check_name(value: str, field: str) -> str:
    if len(value) < 2:
        raise ValueError(f"{field} must be at least 2 characters long")
    if len(value) > 50:
        raise ValueError(f"{field} must be less than 50 characters long")
    if not NAME_PATTERN.match(value):
        raise ValueError(f"{field} contains invalid characters")
    return value


def check_phone(value: Optional[str], field: str = "phone") -> Optional[str]:
    if not value:
        return None
    if not PHONE_PATTERN.match(value):
        raise ValueError(f"Please provide a valid {field} number")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Auth requests
# ---------------------------------------------------------------------------


class LoginRequest(CamelModel):
    email: str
    password: str = Field(repr=False)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return check_password(v)


class RegisterRequest(CamelModel):
    email: str
    password: str = Field(repr=False)
    first_name: str
    last_name: str
    username: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return check_strong_password(v)

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, v: str) -> str:
        return check_name(v, "firstName")

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, v: str) -> str:
        return check_name(v, "lastName")

    @field_validator("username")
    @classmethod
    def _username(cls, v: Optional[str]) -> Optional[str]:
        if v and not USERNAME_PATTERN.match(v):
            raise ValueError(
                "username must be 3-30 characters long and contain only letters, numbers, underscores, and dashes"
            )
        return v or None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)

    @model_validator(mode="after")
    def _default_username(self) -> "RegisterRequest":
        if not self.username:
            self.username = self.email
        return self


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1, repr=False)


class LogoutRequest(CamelModel):
    refresh_token: Optional[str] = Field(default=None, repr=False)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(repr=False)
    new_password: str = Field(repr=False)

    @field_validator("current_password")
    @classmethod
    def _current(cls, v: str) -> str:
        return check_password(v, "currentPassword")

    @field_validator("new_password")
    @classmethod
    def _new(cls, v: str) -> str:
        return check_strong_password(v, "newPassword")

    @model_validator(mode="after")
    def _must_differ(self) -> "ChangePasswordRequest":
        if self.current_password == self.new_password:
            raise ValueError("New password must be different from current password")
        return self


class ForgotPasswordRequest(CamelModel):
    email: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return check_email(v)


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(repr=False)

    @field_validator("new_password")
    @classmethod
    def _new(cls, v: str) -> str:
        return check_strong_password(v, "newPassword")


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# User / admin requests
# ---------------------------------------------------------------------------


class UserUpdateRequest(CamelModel):
    """Self-service profile edits. Role, status, and email are not editable here."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("first_name")
    @classmethod
    def _first_name(cls, v: Optional[str]) -> Optional[str]:
        return check_name(v, "firstName") if v is not None else None

    @field_validator("last_name")
    @classmethod
    def _last_name(cls, v: Optional[str]) -> Optional[str]:
        return check_name(v, "lastName") if v is not None else None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v)


class RoleUpdateRequest(CamelModel):
    role: str

    @field_validator("role")
    @classmethod
    def _role(cls, v: str) -> str:
        if v not in (Role.CUSTOMER, Role.VENDOR):
            raise ValueError("Invalid role. Only Customer and Vendor roles can be assigned")
        return v


class AdminCreateRequest(CamelModel):
    """SuperAdmin-only. Names default to "Admin User" and the username to the email."""

    email: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    first_name: str = "Admin"
    last_name: str = "User"
    username: Optional[str] = None

    @model_validator(mode="after")
    def _check(self) -> "AdminCreateRequest":
        if not self.email or not self.password:
            raise ValueError("Email and password are required")
        self.email = check_email(self.email)
        check_strong_password(self.password)
        check_name(self.first_name, "firstName")
        check_name(self.last_name, "lastName")
        if not self.username:
            self.username = self.email
        return self


class AdminStatusRequest(CamelModel):
    status: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> str:
        if v not in (UserStatus.ACTIVE, UserStatus.INACTIVE):
            raise ValueError("Status must be active or inactive")
        return v


class AdminPasswordResetRequest(CamelModel):
    new_password: Optional[str] = Field(default=None, validate_default=True, repr=False)

    @field_validator("new_password", mode="before")
    @classmethod
    def _new(cls, v: Any) -> str:
        if not isinstance(v, str) or len(v) < 8:
            raise ValueError("New password must be at least 8 characters long")
        return check_password(v, "newPassword")


class VendorApprovalRequest(CamelModel):
    approved: Optional[bool] = Field(default=None, validate_default=True)
    reason: Optional[str] = None

    @field_validator("approved", mode="before")
    @classmethod
    def _approved(cls, v: Any) -> bool:
        # Strict: "true", 1, and missing are all rejected.
        if not isinstance(v, bool):
            raise ValueError("Approval status must be true or false")
        return v


# ---------------------------------------------------------------------------
# Vendor requests
# ---------------------------------------------------------------------------


class VendorRequestCreate(CamelModel):
    business_name: str = Field(min_length=2, max_length=255)
    business_description: str = Field(min_length=1)
    business_address: str = Field(min_length=1)
    business_phone: str
    business_email: Optional[str] = None
    business_license: str = Field(min_length=1)
    tax_number: str = Field(min_length=1)

    @field_validator("business_phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        checked = check_phone(v, "businessPhone")
        if checked is None:
            raise ValueError("businessPhone is required")
        return checked

    @field_validator("business_email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return check_email(v, "businessEmail") if v else None


class VendorProfileUpdate(CamelModel):
    """Fields a vendor may change. Anything else in the body is ignored."""

    model_config = ConfigDict(extra="ignore")

    business_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    business_description: Optional[str] = None
    business_address: Optional[str] = None
    business_phone: Optional[str] = None
    business_email: Optional[str] = None
    business_license: Optional[str] = None
    tax_number: Optional[str] = None
    business_type: Optional[str] = Field(default=None, pattern=r"^(individual|company|partnership)$")
    website: Optional[str] = None
    categories: Optional[list[str]] = None
    tags: Optional[list[str]] = None

    @field_validator("business_phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return check_phone(v, "businessPhone")

    @field_validator("business_email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return check_email(v, "businessEmail") if v else None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(CamelModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    refresh_expires_in: Optional[int] = None
    token_type: str = "Bearer"


class UserOut(CamelModel):
    """Public view of a stored user. Reset token fields are never exposed."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    role: str
    status: str
    email_verified: bool
    phone: Optional[str] = None
    vendor_request_status: Optional[str] = None
    vendor_requested_at: Optional[str] = None
    vendor_approved_at: Optional[str] = None
    vendor_approved_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login: Optional[str] = None


class VendorRequestOut(CamelModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: Optional[int] = None
    user_id: str
    business_name: str
    business_description: str
    business_address: str
    business_phone: str
    business_email: str
    business_license: str
    tax_number: str
    status: str
    requested_at: str
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class RatingOut(CamelModel):
    average: float = 0.0
    count: int = 0


class VendorStatsOut(CamelModel):
    total_products: int = 0
    total_orders: int = 0
    total_revenue: float = 0.0
    total_customers: int = 0


class VendorProfileOut(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    business_name: str
    business_description: str = ""
    business_address: str = ""
    business_phone: str = ""
    business_email: str = ""
    business_license: Optional[str] = None
    tax_number: Optional[str] = None
    business_type: str = "individual"
    website: Optional[str] = None
    categories: list[str] = []
    tags: list[str] = []
    rating: RatingOut
    stats: VendorStatsOut
    status: str
    is_verified: bool
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_profile(cls, profile: Any, public: bool = False) -> "VendorProfileOut":
        """Build from a VendorProfile dataclass. Public views drop license, tax id, and approver."""
        return cls(
            id=profile.id,
            user_id=profile.user_id,
            business_name=profile.business_name,
            business_description=profile.business_description,
            business_address=profile.business_address,
            business_phone=profile.business_phone,
            business_email=profile.business_email,
            business_license=None if public else profile.business_license,
            tax_number=None if public else profile.tax_number,
            business_type=profile.business_type,
            website=profile.website,
            categories=profile.categories,
            tags=profile.tags,
            rating=RatingOut(average=profile.rating_average, count=profile.rating_count),
            stats=VendorStatsOut(
                total_products=profile.total_products,
                total_orders=profile.total_orders,
                total_revenue=profile.total_revenue,
                total_customers=profile.total_customers,
            ),
            status=profile.status,
            is_verified=profile.is_verified,
            approved_at=profile.approved_at,
            approved_by=None if public else profile.approved_by,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class ErrorDetail(BaseModel):
    """Machine-readable error info inside the error envelope."""

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    stack: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope: {success: false, message, error: {code, ...}}."""

    model_config = ConfigDict(frozen=True, extra="allow")

    success: bool = False
    message: str
    error: ErrorDetail
    timestamp: str
    path: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    environment: str


def success(
    data: Any = None,
    message: Optional[str] = None,
    pagination: Optional[Pagination] = None,
) -> dict[str, Any]:
    """Build the success envelope {success: true, data?, message?, pagination?}."""
    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        if isinstance(data, BaseModel):
            data = data.model_dump(by_alias=True)
        elif isinstance(data, list):
            data = [d.model_dump(by_alias=True) if isinstance(d, BaseModel) else d for d in data]
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination.model_dump()
    return body
