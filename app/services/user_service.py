import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, config
from app.dependencies.cache import get_redis
from app.dependencies.database import get_db
from app.models.password_reset import EmailVerification
from app.models.user import User, UserRole
from app.roles import create_user, verify_password
from app.services.email_service import NotificationSender
from app.services.email_templates import verification_email
from app.services.password_service import generate_token
from app.utils import decode_jwt_token, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    user: User
    verification_token: str


# Отримати користувача за email
async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def get_request_token(request: Request) -> Optional[str]:
    """Токен з куки access_token або із заголовка Authorization: Bearer."""
    token = request.cookies.get("access_token")
    if token:
        return token

    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_token_data(
    request: Request,
    redis: aioredis.Redis = Depends(get_redis),
) -> dict:
    token = get_request_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    token_data = decode_jwt_token(token)

    if await redis.exists(f"blacklist:{token}"):
        raise HTTPException(status_code=401, detail="Token has been revoked")

    return token_data


async def get_current_user_id(token_data: dict = Depends(get_token_data)) -> int:
    return int(token_data["id"])


async def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def admin_required(token_data: dict = Depends(get_token_data)) -> dict:
    """Перевіряє, чи є користувач адміністратором."""
    if token_data.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: Admin role required",
        )

    return {"id": int(token_data["id"]), "role": token_data["role"]}


# Аутентифікація користувача
async def authenticate_user(db: AsyncSession, email: str, password: str) -> User | None:
    user = await get_user_by_email(db, email)

    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


async def register_user(
    db: AsyncSession,
    notifier: NotificationSender,
    name: str,
    email: str,
    password: str,
    settings: Settings = config,
) -> Registration:
    """Реєстрація: користувач + токен підтвердження email в одній транзакції."""
    user = await create_user(db, name, email, password)

    token = generate_token(24)
    db.add(
        EmailVerification(
            user_id=user.id,
            token=token,
            expires_at=utcnow() + timedelta(hours=settings.VERIFICATION_TOKEN_EXPIRE_HOURS),
        ),
    )
    await db.commit()
    await db.refresh(user)

    verify_link = f"{settings.frontend_url_for_links}/verify-email?token={token}"
    subject, body = verification_email(verify_link)
    result = await notifier.send(user.email, subject, body)
    if not result.delivered:
        logger.warning(
            f"Verification email for user {user.id} not delivered: {result.error}",
        )

    return Registration(user=user, verification_token=token)


async def verify_email(db: AsyncSession, token: str) -> bool:
    """Підтверджує email. Токен використовується один раз."""
    now = utcnow()

    consumed = await db.execute(
        update(EmailVerification)
        .where(
            EmailVerification.token == token,
            EmailVerification.used.is_(False),
            EmailVerification.expires_at > now,
        )
        .values(used=True)
        .returning(EmailVerification.user_id)
        .execution_options(synchronize_session=False),
    )
    user_id = consumed.scalar_one_or_none()
    if user_id is None:
        await db.rollback()
        return False

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(is_verified=True, updated_at=now)
        .execution_options(synchronize_session=False),
    )
    await db.commit()
    logger.info(f"Email verified for user {user_id}")
    return True
