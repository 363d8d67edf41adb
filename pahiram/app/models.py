"""
Data Models Module

This module defines Pydantic models for request/response validation
and data serialization throughout the service.

Models are organized by functional area:
- Authentication models (login request, login/logout responses)
- APCIS models (the remote login envelope and its records)
"""

from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

_email_adapter = TypeAdapter(EmailStr)


# ============================================================================
# Authentication Models
# ============================================================================

class LoginRequest(BaseModel):
    """
    Credentials forwarded unchanged to the APCIS login API.

    The email must be a valid address, but it is kept exactly as typed;
    EmailStr's normalised form is only used for validation.
    """

    email: str = Field(..., description="APC email address")
    password: str = Field(..., description="APCIS password", min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        try:
            _email_adapter.validate_python(v)
        except ValidationError as e:
            raise ValueError("value is not a valid email address") from e
        return v

    def __repr__(self) -> str:
        return f"LoginRequest(email={self.email!r})"


class LoginData(BaseModel):
    user: Dict[str, Any] = Field(..., description="Local user profile with role and department code")
    pahiram_token: str = Field(..., description="Session token, returned only once")
    apcis_token: str = Field(..., description="APCIS access token")


class LoginResponse(BaseModel):
    status: bool = True
    data: LoginData
    method: str = "POST"


class MessageResponse(BaseModel):
    status: bool = True
    message: str
    method: str = "DELETE"


class ErrorResponse(BaseModel):
    status: bool = False
    error: str
    method: str


# ============================================================================
# APCIS Models
# ============================================================================

class ApcisUser(BaseModel):
    """User record as returned by APCIS; extra fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    apc_id: str = Field(..., min_length=1)
    first_name: str
    last_name: str
    email: str


class ApcisCourse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    course: str
    course_acronym: str = Field(..., min_length=1)


class ApcisToken(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    # Kept as text; parsed by the token issuer with the configured format
    expires_at: str


class ApcisLoginData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user: ApcisUser
    course: ApcisCourse
    apcis_token: ApcisToken


class ApcisLoginEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: bool
    data: ApcisLoginData
    message: Optional[str] = None
