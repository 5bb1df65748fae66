import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies.cache import get_redis
from app.dependencies.database import get_db
from app.dependencies.services import get_notifier, get_password_recovery
from app.exceptions.errors import InvalidInputError
from app.models.user import User
from app.schemas.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    PasswordStrengthResponse,
    RegisterResponse,
    ResetPasswordRequest,
    Token,
    UserCreate,
    UserResponse,
    ValidatePasswordRequest,
)
from app.services.email_service import NotificationSender
from app.services.password_service import (
    PasswordRecovery,
    PasswordResult,
    validate_password_strength,
)
from app.services.user_service import (
    authenticate_user,
    get_current_user,
    get_current_user_id,
    get_request_token,
    get_token_data,
    register_user,
    verify_email,
)
from app.utils import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _raise_on_failure(result: PasswordResult) -> MessageResponse:
    if not result.success:
        raise InvalidInputError(result.message, feedback=result.feedback)
    return MessageResponse(message=result.message)


# Реєстрація користувача
@router.post(
    "/sign-up",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def sign_up(
    request: Request,
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSender = Depends(get_notifier),
):
    settings = request.app.state.settings
    registration = await register_user(
        db,
        notifier,
        user_data.name,
        str(user_data.email),
        user_data.password,
        settings=settings,
    )

    # Токен у відповіді тільки поза production
    verify_token = None if settings.is_production else registration.verification_token

    return RegisterResponse(
        message="Registered. Please verify your email.",
        user=UserResponse.model_validate(registration.user),
        verify_token=verify_token,
    )


@router.get("/verify-email", response_model=MessageResponse)
async def verify_user_email(
    token: str = Query(..., min_length=10),
    db: AsyncSession = Depends(get_db),
):
    if not await verify_email(db, token):
        raise HTTPException(status_code=400, detail="Invalid or expired token")
    return MessageResponse(message="Email verified")


# 🔑 Логін користувача (отримання JWT-токена)
@router.post("/sign-in", response_model=Token, status_code=status.HTTP_200_OK)
async def sign_in(
    request: Request,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """🔐 Вхід користувача: токен у відповіді та в HTTP-only cookie"""

    user = await authenticate_user(db, str(login_data.email), login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    settings = request.app.state.settings
    access_token = create_access_token(user)
    body = Token(access_token=access_token, user=UserResponse.model_validate(user))

    response = JSONResponse(content=body.model_dump(mode="json", by_alias=True))
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return response


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    token_data: dict = Depends(get_token_data),
    redis: aioredis.Redis = Depends(get_redis),
):
    """🔓 Вихід: токен потрапляє в blacklist до закінчення терміну дії"""
    token = get_request_token(request)

    expires_at = datetime.fromtimestamp(int(token_data["exp"]), tz=timezone.utc)
    ttl = int((expires_at - datetime.now(timezone.utc)).total_seconds())
    if ttl > 0:
        await redis.setex(f"blacklist:{token}", ttl, "revoked")
    logger.info(f"Access token revoked for user {token_data['id']}")

    response = JSONResponse(content={"message": "Successfully logged out", "feedback": []})
    response.delete_cookie("access_token")
    return response


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    recovery: PasswordRecovery = Depends(get_password_recovery),
):
    result = await recovery.initiate_forgot_password(str(data.email))
    if not result.success:
        raise InvalidInputError(result.message)

    return ForgotPasswordResponse(message=result.message, reset_token=result.reset_token)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    recovery: PasswordRecovery = Depends(get_password_recovery),
):
    result = await recovery.reset_password(data.token, data.new_password)
    return _raise_on_failure(result)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    data: ChangePasswordRequest,
    user_id: int = Depends(get_current_user_id),
    recovery: PasswordRecovery = Depends(get_password_recovery),
):
    result = await recovery.change_password(
        user_id,
        data.current_password,
        data.new_password,
    )
    return _raise_on_failure(result)


@router.post("/validate-password", response_model=PasswordStrengthResponse)
async def validate_password(data: ValidatePasswordRequest):
    strength = validate_password_strength(data.password)
    return PasswordStrengthResponse(
        is_valid=strength.is_valid,
        score=strength.score,
        feedback=strength.feedback,
    )
