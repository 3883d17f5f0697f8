"""
API request and response models for the NoPass REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
vault/models.py, which own the internal domain representation. Route handlers
map between the two.

Request models never declare an owner field. Unknown keys in a request body
(an "owner_email" smuggled into a create or update, for example) are ignored
by Pydantic's default extra="ignore", so the owner of a record can only ever
come from the authenticated identity.

Separation of concerns: auth/ and vault/ models = domain truth; api/ models =
API contract.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from auth.models import Identity
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_MIN_CARD_DIGITS = 12

# Identifiers and display fields are trimmed. Secrets (passwords, notes) are
# stored exactly as submitted.
TrimmedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


def _check_password_bytes(value: str) -> str:
    """bcrypt silently truncates past 72 bytes; reject instead of truncating."""
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Account request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/register."""

    name: Optional[TrimmedStr] = Field(default=None, max_length=100)
    email: TrimmedStr = Field(min_length=3, max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class LoginRequest(BaseModel):
    """Request body for POST /api/login, /api/mobile-login and the credentials callback."""

    model_config = ConfigDict(populate_by_name=True)

    email: TrimmedStr = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1)
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class ForgotPasswordRequest(BaseModel):
    email: TrimmedStr = Field(min_length=1, max_length=320)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/auth/reset-password.

    token is the raw hex token from the emailed link.
    """

    token: TrimmedStr = Field(min_length=1, max_length=128)
    password: str = Field(min_length=8)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


# ---------------------------------------------------------------------------
# Vault request models
# ---------------------------------------------------------------------------


class PasswordEntryCreate(BaseModel):
    """Request body for POST /api/password and /api/mobile-passwords."""

    website: TrimmedStr = Field(min_length=1, max_length=2048)
    username: TrimmedStr = Field(min_length=1, max_length=512)
    password: str = Field(min_length=1, max_length=4096)
    notes: Optional[str] = Field(default=None, max_length=10_000)


class PasswordEntryUpdate(PasswordEntryCreate):
    """Request body for PUT: the full entry plus the id of the record to replace.

    id is optional at the schema level so a missing id is answered with 400
    bad_request rather than a validation error.
    """

    id: Optional[int] = Field(default=None, gt=0)


class CardEntryCreate(BaseModel):
    """Request body for POST /api/card and /api/mobile-cards.

    card_number keeps its original formatting (spaces, dashes) when stored;
    the last four digits are derived from its digits only.
    """

    cardholder_name: TrimmedStr = Field(min_length=1, max_length=255)
    card_number: TrimmedStr = Field(min_length=12, max_length=32, pattern=r"^[0-9 \-]+$")
    expiry_date: TrimmedStr = Field(min_length=3, max_length=16)
    cvv: TrimmedStr = Field(min_length=3, max_length=4, pattern=r"^[0-9]+$")
    notes: Optional[str] = Field(default=None, max_length=10_000)

    @field_validator("card_number")
    @classmethod
    def enough_digits(cls, v: str) -> str:
        if sum(ch.isdigit() for ch in v) < _MIN_CARD_DIGITS:
            raise ValueError(f"Card number must contain at least {_MIN_CARD_DIGITS} digits.")
        return v


class CardEntryUpdate(CardEntryCreate):
    id: Optional[int] = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityOut(BaseModel):
    """Public view of an identity. Never includes password or reset hashes."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: Optional[str] = None
    email: str
    provider: str
    image: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(
            id=identity.id,
            name=identity.name,
            email=identity.email,
            provider=identity.provider,
            image=identity.image,
            last_login=identity.last_login,
            created_at=identity.created_at,
        )


class AuthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None
    user: IdentityOut
    token: Optional[str] = None
    url: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class SessionResponse(BaseModel):
    """Response for GET /api/auth/session. user is None when signed out."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    authenticated: bool
    user: Optional[IdentityOut] = None


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class PasswordEntryOut(BaseModel):
    """Decrypted password entry as returned to its owner."""

    model_config = ConfigDict(frozen=True)

    id: int
    website: str
    username: str
    password: str
    notes: Optional[str] = None
    created_at: str
    updated_at: str


class CardEntryOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    cardholder_name: str
    card_number: str
    card_number_last4: str
    expiry_date: str
    cvv: str
    notes: Optional[str] = None
    created_at: str
    updated_at: str


class PasswordListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[PasswordEntryOut]


class PasswordEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: PasswordEntryOut


class CardListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: list[CardEntryOut]


class CardEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    data: CardEntryOut


class CountResponse(BaseModel):
    """Response for ?countOnly=true. Counting never decrypts anything."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    count: int


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
