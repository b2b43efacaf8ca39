"""
API request and response models for LearnDeck REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (fullName, confirmPassword, isVerified) to match the
front end; Python attributes stay snake_case via an alias generator.

Required-field and password-match checks live in AuthService, not here, so the
same rules apply to every caller. These models only bound sizes.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Credential

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# bcrypt refuses passwords longer than 72 bytes.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/users/register."""

    model_config = _CAMEL

    full_name: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=_BCRYPT_MAX_BYTES)
    confirm_password: str = Field(default="", max_length=_BCRYPT_MAX_BYTES)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        """Max length is in characters; bcrypt's limit is in UTF-8 bytes."""
        if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes.")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login."""

    model_config = _CAMEL

    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """The filtered user returned by login: no password, no provider detail."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    full_name: str
    email: str
    role: str
    image: Optional[str] = None

    @classmethod
    def from_credential(cls, credential: Credential) -> "UserSummary":
        return cls(
            id=credential.id,
            full_name=credential.full_name,
            email=credential.email,
            role=credential.role,
            image=credential.image,
        )


class Profile(UserSummary):
    """GET /profile payload: the credential minus its password hash."""

    is_verified: bool
    provider: str
    provider_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_credential(cls, credential: Credential) -> "Profile":
        return cls(
            id=credential.id,
            full_name=credential.full_name,
            email=credential.email,
            role=credential.role,
            image=credential.image,
            is_verified=credential.is_verified,
            provider=credential.provider,
            provider_id=credential.provider_id,
            created_at=credential.created_at,
            updated_at=credential.updated_at,
        )


class ApiResponse(BaseModel):
    """Success envelope. success is always True here; errors use ErrorResponse."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    data: Optional[dict] = None


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
