"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. Field-level
validation of credentials (email format, password length, confirmation match)
is NOT done here -- it lives in auth/schemas.py so the engine enforces it for
every caller and reports it in the {errors: [...]} envelope instead of a 422.
Request bodies therefore accept plain strings.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=1024)
    confirm_password: str = Field(default="", max_length=1024, alias="confirmPassword")


class SignInRequest(BaseModel):
    email: str = Field(default="", max_length=320)
    password: str = Field(default="", max_length=1024)


class ResendVerificationRequest(BaseModel):
    email: str = Field(default="", max_length=320)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorMessage(BaseModel):
    """One failure. key is the stable discriminator the UI switches on."""

    key: str
    message: str
    field: Optional[str] = None


class ActionResponse(BaseModel):
    """Envelope returned by every credential action: {errors, data?}."""

    errors: list[ErrorMessage] = []
    data: Optional[dict] = None


class MeResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: str
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None
    is_email_verified: bool


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class ErrorDetail(BaseModel):
    """Structured error payload for non-action endpoints."""

    key: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Single-error envelope returned by exception handlers."""

    errors: list[ErrorDetail]


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
