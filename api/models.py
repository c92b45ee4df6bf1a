"""
API request and response models for the Whiskey Canon REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the Account dataclass in auth/models.py,
which owns the internal domain representation. Route handlers map between the
two, and only the response models decide which Account fields leave the
process: password hashes, verification codes and reset tokens never do.

Field names on the wire are camelCase (firstName, isProfilePublic) to match
the frontend; Python attributes stay snake_case via aliases.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Account, Role

# ---------------------------------------------------------------------------
# Shared config
# ---------------------------------------------------------------------------

_REQUEST_CONFIG = ConfigDict(str_strip_whitespace=True, populate_by_name=True)
# Bodies carrying a password: the password is kept byte-for-byte and the
# other string fields strip themselves through the annotated types below.
_PASSWORD_REQUEST_CONFIG = ConfigDict(populate_by_name=True)
_RESPONSE_CONFIG = ConfigDict(frozen=True, populate_by_name=True)

# Shape check only. Deliverability is proven by the verification code.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=254, pattern=EMAIL_PATTERN)]
_Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]
_Password = Annotated[str, StringConstraints(max_length=256)]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload. Extra keys carry per-error context
    (required/role, requiresVerification, errors, attemptsRemaining)."""

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. Password policy is
    enforced by the service, not here, so all violations are reported together."""

    model_config = _PASSWORD_REQUEST_CONFIG

    username: _Username
    email: _Email
    password: _Password = Field(min_length=1)
    first_name: Optional[_Name] = Field(default=None, alias="firstName")
    last_name: Optional[_Name] = Field(default=None, alias="lastName")


class VerifyEmailRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    email: _Email
    code: str = Field(min_length=1, max_length=16)


class EmailRequest(BaseModel):
    """Request body for resend-verification and forgot-password."""

    model_config = _REQUEST_CONFIG

    email: _Email


class LoginRequest(BaseModel):
    model_config = _PASSWORD_REQUEST_CONFIG

    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
    password: _Password = Field(min_length=1)


class ResetPasswordRequest(BaseModel):
    model_config = _PASSWORD_REQUEST_CONFIG

    token: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)]
    password: _Password = Field(min_length=1)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/profile. Omitted fields are unchanged."""

    model_config = _PASSWORD_REQUEST_CONFIG

    email: Optional[_Email] = None
    first_name: Optional[_Name] = Field(default=None, alias="firstName")
    last_name: Optional[_Name] = Field(default=None, alias="lastName")
    current_password: Optional[_Password] = Field(default=None, alias="currentPassword")
    new_password: Optional[_Password] = Field(default=None, alias="newPassword")


class VisibilityUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    is_profile_public: bool = Field(alias="isProfilePublic")


# ---------------------------------------------------------------------------
# Admin -- request models
# ---------------------------------------------------------------------------


class RoleUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    role: Role


class AdminProfileUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[_Email] = None
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=100)


# ---------------------------------------------------------------------------
# Contact
# ---------------------------------------------------------------------------


class ContactRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    name: str = Field(min_length=1, max_length=200)
    email: _Email
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Self or admin view of an account."""

    model_config = _RESPONSE_CONFIG

    id: int
    username: str
    email: str
    role: Role
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    profile_photo: Optional[str] = Field(default=None, alias="profilePhoto")
    is_profile_public: bool = Field(default=False, alias="isProfilePublic")
    email_verified: bool = Field(default=False, alias="emailVerified")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            first_name=account.first_name,
            last_name=account.last_name,
            profile_photo=account.profile_photo,
            is_profile_public=account.is_profile_public,
            email_verified=account.email_verified,
            created_at=account.created_at,
            last_login=account.last_login,
        )


class PublicProfileResponse(BaseModel):
    """What anyone may see of a public profile. No email, no credentials."""

    model_config = _RESPONSE_CONFIG

    id: int
    username: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    profile_photo: Optional[str] = Field(default=None, alias="profilePhoto")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @classmethod
    def from_account(cls, account: Account) -> "PublicProfileResponse":
        return cls(
            id=account.id,
            username=account.username,
            first_name=account.first_name,
            last_name=account.last_name,
            profile_photo=account.profile_photo,
            created_at=account.created_at,
        )


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: Optional[str] = None
    user: AccountResponse


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: list[AccountResponse]


class RegisterResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str
    user: AccountResponse
    email_sent: bool = Field(alias="emailSent")


class ProfileListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    profiles: list[PublicProfileResponse]


class ProfileEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    profile: PublicProfileResponse


class CsrfTokenResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    csrf_token: str = Field(alias="csrfToken")
