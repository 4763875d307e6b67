"""
Pydantic schemas for Authentication API.
"""

from pydantic import EmailStr, Field

from urbanwatch.api.schemas.base import CamelCaseModel, IDMixin
from urbanwatch.db.models import UserRole


class LoginRequest(CamelCaseModel):
    """Login request with email and password."""

    email: EmailStr
    password: str = Field(..., min_length=6)


class UserResponse(IDMixin):
    """Authenticated user profile."""

    name: str
    email: str
    phone: str | None
    role: UserRole


class LoginResponse(CamelCaseModel):
    """Login response with access token and user info."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse
