"""
Authentication API endpoints.

Issues bearer tokens for citizens, purok leaders and operators.
"""

from fastapi import APIRouter, HTTPException, status

from urbanwatch.api.deps import DB, CurrentUser
from urbanwatch.api.schemas import ApiResponse, LoginRequest, LoginResponse, UserResponse
from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.queries import get_user_by_email
from urbanwatch.services.auth import create_access_token, verify_password

router = APIRouter()
logger = get_logger(__name__)


@router.post("/login", response_model=ApiResponse[LoginResponse])
async def login(request: LoginRequest, db: DB) -> ApiResponse[LoginResponse]:
    """
    Authenticate a user and return an access token.

    Raises:
        HTTPException: 401 if credentials are invalid, 403 if the account
            is deactivated.
    """
    user = await get_user_by_email(db, request.email)

    if user is None or not verify_password(request.password, user.password_hash):
        logger.warning("Failed login attempt", email=request.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        logger.warning("Login attempt for inactive user", email=request.email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    access_token = create_access_token(user.id, user.role)
    logger.info("User logged in", user_id=str(user.id), role=user.role.value)

    return ApiResponse(
        message="Login successful",
        data=LoginResponse(
            access_token=access_token,
            token_type="bearer",
            expires_in=get_settings().jwt_expiry_hours * 3600,
            user=UserResponse.model_validate(user),
        ),
    )


@router.get("/me", response_model=ApiResponse[UserResponse])
async def me(user: CurrentUser) -> ApiResponse[UserResponse]:
    """Get the current authenticated user's profile."""
    return ApiResponse(
        message="User retrieved successfully",
        data=UserResponse.model_validate(user),
    )
