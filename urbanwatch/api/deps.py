"""
FastAPI dependency injection.

Provides reusable dependencies for routes:
- Database sessions
- Authentication and role guards
- Workflow collaborators (event publisher, media storage, classifier)
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db import User, UserRole, get_session
from urbanwatch.db.queries import get_user_by_id
from urbanwatch.services.assignment import AssignmentPolicy, DefaultPurokLeaderPolicy
from urbanwatch.services.auth import Actor, verify_api_key, verify_token
from urbanwatch.services.classifier import EmergencyClassifier
from urbanwatch.services.events import EventPublisher
from urbanwatch.services.storage import LocalMediaStorage

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that yields an async database session.

    Handles commit on success and rollback on error.
    """
    async with get_session() as session:
        yield session


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency that extracts and validates the current user from the JWT.

    Raises:
        HTTPException: If the token is missing or invalid, the user is
            unknown, or the account is deactivated.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_token(credentials.credentials)
        user_id = UUID(payload["sub"])
    except (JWTError, KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    user = await get_user_by_id(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return user


def require_role(*roles: UserRole) -> Callable[[User], Awaitable[User]]:
    """
    Build a dependency that only admits users with one of the given roles.

    Example:
        @router.get("/stats")
        async def stats(user: Annotated[User, Depends(require_role(UserRole.operator))]):
            ...
    """

    async def _check_role(
        user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if UserRole(user.role) not in roles:
            logger.warning(
                "Role not permitted",
                user_id=str(user.id),
                role=UserRole(user.role).value,
                allowed=[r.value for r in roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return user

    return _check_role


async def get_purok_leader_actor(
    user: Annotated[User, Depends(require_role(UserRole.purok_leader, UserRole.operator))],
) -> Actor:
    """The acting purok leader (or operator) for workflow operations."""
    return Actor.from_user(user)


async def verify_device_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """
    Dependency that authenticates CCTV detectors by their shared key.

    Raises:
        HTTPException: 401 if the key is missing or wrong.
    """
    expected = get_settings().yolo_api_key.get_secret_value()
    if not verify_api_key(x_api_key, expected):
        logger.warning("Rejected detector request with invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def get_event_publisher(request: Request) -> EventPublisher | None:
    """Publisher created at startup; None drops events with a warning."""
    return getattr(request.app.state, "publisher", None)


def get_media_storage(request: Request) -> LocalMediaStorage:
    """Media storage from app state, or one built from settings."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        settings = get_settings()
        storage = LocalMediaStorage(settings.media_root, settings.media_base_url)
    return storage


def get_classifier(request: Request) -> EmergencyClassifier:
    """
    Snapshot classifier from app state.

    Raises:
        HTTPException: If no classifier was configured at startup.
    """
    classifier = getattr(request.app.state, "classifier", None)
    if classifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Snapshot verification not available",
        )
    return classifier


def get_assignment_policy() -> AssignmentPolicy:
    """Assignment policy for new concerns."""
    return DefaultPurokLeaderPolicy.from_settings()


# Type aliases for cleaner route signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentCitizen = Annotated[User, Depends(require_role(UserRole.citizen))]
CurrentOperator = Annotated[User, Depends(require_role(UserRole.operator))]
PurokLeaderActor = Annotated[Actor, Depends(get_purok_leader_actor)]
Publisher = Annotated[EventPublisher | None, Depends(get_event_publisher)]
Storage = Annotated[LocalMediaStorage, Depends(get_media_storage)]
Classifier = Annotated[EmergencyClassifier, Depends(get_classifier)]
Assignment = Annotated[AssignmentPolicy, Depends(get_assignment_policy)]
DeviceKey = Depends(verify_device_key)
