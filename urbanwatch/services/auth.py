"""
Authentication service for UrbanWatch.

Handles password hashing, JWT access tokens, device API keys and the
Actor value passed explicitly into workflow operations.
"""

import hmac
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from jose import jwt
from passlib.context import CryptContext

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.models import User, UserRole

logger = get_logger(__name__)

# Bcrypt password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class Actor:
    """The user performing an operation."""

    id: UUID
    role: UserRole
    name: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=UserRole(user.role), name=user.name)

    @property
    def can_override_assignment(self) -> bool:
        """Operators may act on concerns assigned to anyone."""
        return self.role == UserRole.operator


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def create_access_token(user_id: str | UUID, role: str | UserRole) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User UUID (converted to string).
        role: User role for authorization checks.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "role": role.value if isinstance(role, UserRole) else role,
        "type": "access",
        "exp": now + timedelta(hours=settings.jwt_expiry_hours),
        "iat": now,
    }
    return jwt.encode(
        payload,
        settings.jwt_secret.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def verify_token(token: str) -> dict:
    """
    Decode and verify a JWT token.

    Raises:
        ExpiredSignatureError: If the token has expired.
        JWTError: If the token is invalid or malformed.
    """
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
    )


def verify_api_key(presented: str | None, expected: str | None) -> bool:
    """
    Compare a presented API key with the configured one.

    Uses a constant-time comparison; an unset key never matches.
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode(), expected.encode())
