import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, config
from app.dependencies.database import Database
from app.exceptions.errors import NotFoundError
from app.models.password_reset import PasswordReset
from app.models.user import User
from app.roles import hash_password, verify_password
from app.services.email_service import NotificationSender
from app.services.email_templates import password_reset_email
from app.utils import utcnow

logger = logging.getLogger(__name__)

SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

GENERIC_RESET_MESSAGE = (
    "If the account exists and is verified, reset instructions have been sent"
)
INVALID_TOKEN_MESSAGE = "Invalid or expired reset token"


@dataclass(frozen=True)
class PasswordStrength:
    is_valid: bool
    score: int
    feedback: List[str]


@dataclass(frozen=True)
class ForgotPasswordResult:
    success: bool
    message: str
    reset_token: Optional[str] = None


@dataclass(frozen=True)
class PasswordResult:
    success: bool
    message: str
    feedback: List[str] = field(default_factory=list)


_STRENGTH_CHECKS = (
    (lambda p: len(p) >= 8, "Password must be at least 8 characters long"),
    (
        lambda p: re.search(r"[A-Z]", p) is not None,
        "Password must contain at least one uppercase letter",
    ),
    (
        lambda p: re.search(r"[a-z]", p) is not None,
        "Password must contain at least one lowercase letter",
    ),
    (
        lambda p: re.search(r"\d", p) is not None,
        "Password must contain at least one number",
    ),
    (
        lambda p: any(c in SPECIAL_CHARACTERS for c in p),
        "Password must contain at least one special character",
    ),
)


def validate_password_strength(password: str) -> PasswordStrength:
    """
    Оцінює пароль за п'ятьма незалежними перевірками (по одному балу):
    - Мінімум 8 символів
    - Хоча б одна велика літера
    - Хоча б одна мала літера
    - Хоча б одна цифра
    - Хоча б один спеціальний символ
    """
    feedback = [message for check, message in _STRENGTH_CHECKS if not check(password)]
    score = len(_STRENGTH_CHECKS) - len(feedback)

    return PasswordStrength(
        is_valid=score == len(_STRENGTH_CHECKS) and len(password) >= 8,
        score=score,
        feedback=feedback,
    )


def generate_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


class PasswordRecovery:
    """Скидання, зміна пароля та обмеження кількості запитів на скидання."""

    def __init__(
        self,
        database: Database,
        notifier: NotificationSender,
        settings: Settings = config,
    ):
        self.database = database
        self.notifier = notifier
        self.settings = settings

    async def _get_user_by_email(self, db, email: str) -> Optional[User]:
        return await db.scalar(select(User).where(User.email == email.lower()))

    async def check_rate_limit(self, email: str) -> bool:
        """True, якщо користувач ще може запросити скидання пароля."""
        window_start = utcnow() - timedelta(
            minutes=self.settings.PASSWORD_RESET_RATE_WINDOW_MINUTES,
        )

        async with self.database.session() as db:
            user = await self._get_user_by_email(db, email)
            if not user:
                return True

            recent_requests = await db.scalar(
                select(func.count())
                .select_from(PasswordReset)
                .where(
                    PasswordReset.user_id == user.id,
                    PasswordReset.created_at >= window_start,
                ),
            )

        return (recent_requests or 0) < self.settings.PASSWORD_RESET_RATE_LIMIT

    async def initiate_forgot_password(self, email: str) -> ForgotPasswordResult:
        async with self.database.session() as db:
            user = await self._get_user_by_email(db, email)

        # Однакова відповідь для неіснуючого акаунта, щоб не розкривати email
        if not user:
            return ForgotPasswordResult(success=True, message=GENERIC_RESET_MESSAGE)

        if not user.is_verified:
            return ForgotPasswordResult(
                success=False,
                message="Please verify your email address before resetting password",
            )

        # Перевірка і вставка не атомарні: ліміт м'який
        if not await self.check_rate_limit(user.email):
            logger.warning(f"Password reset rate limit hit for user {user.id}")
            return ForgotPasswordResult(
                success=False,
                message="Too many password reset requests. Please try again later",
            )

        token = generate_token()
        async with self.database.session() as db:
            async with db.begin():
                db.add(
                    PasswordReset(
                        user_id=user.id,
                        token=token,
                        expires_at=utcnow()
                        + timedelta(minutes=self.settings.RESET_TOKEN_EXPIRE_MINUTES),
                    ),
                )

        reset_link = (
            f"{self.settings.frontend_url_for_links}/reset-password?token={token}"
        )
        subject, body = password_reset_email(
            reset_link,
            self.settings.RESET_TOKEN_EXPIRE_MINUTES,
        )
        result = await self.notifier.send(user.email, subject, body)

        if result.delivered:
            logger.info(f"Password reset email sent to user {user.id}")
            return ForgotPasswordResult(success=True, message=GENERIC_RESET_MESSAGE)

        if not self.settings.is_production:
            logger.warning(
                f"Reset email for user {user.id} not delivered ({result.error}), "
                "returning token in response",
            )
            return ForgotPasswordResult(
                success=True,
                message="Reset email could not be delivered; use the returned token",
                reset_token=token,
            )

        logger.error(f"Reset email for user {user.id} not delivered: {result.error}")
        return ForgotPasswordResult(
            success=False,
            message="Unable to send reset email. Please try again later or contact support.",
        )

    async def reset_password(self, token: str, new_password: str) -> PasswordResult:
        strength = validate_password_strength(new_password)
        now = utcnow()

        async with self.database.session() as db:
            async with db.begin():
                reset = await db.scalar(
                    select(PasswordReset)
                    .where(
                        PasswordReset.token == token,
                        PasswordReset.used.is_(False),
                        PasswordReset.expires_at > now,
                    )
                    .with_for_update(),
                )
                # Одне повідомлення для невірного, простроченого та використаного токена
                if reset is None:
                    return PasswordResult(success=False, message=INVALID_TOKEN_MESSAGE)

                if not strength.is_valid:
                    return PasswordResult(
                        success=False,
                        message="Password does not meet requirements: "
                        + ", ".join(strength.feedback),
                        feedback=strength.feedback,
                    )

                consumed = await db.execute(
                    update(PasswordReset)
                    .where(PasswordReset.id == reset.id, PasswordReset.used.is_(False))
                    .values(used=True)
                    .execution_options(synchronize_session=False),
                )
                if consumed.rowcount != 1:
                    return PasswordResult(success=False, message=INVALID_TOKEN_MESSAGE)

                await db.execute(
                    update(User)
                    .where(User.id == reset.user_id)
                    .values(
                        hashed_password=hash_password(new_password, sensitive=True),
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False),
                )

        logger.info(f"Password reset successful for user {reset.user_id}")
        return PasswordResult(
            success=True,
            message="Password has been reset successfully",
        )

    async def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
    ) -> PasswordResult:
        async with self.database.session() as db:
            async with db.begin():
                user = await db.get(User, user_id)
                if not user:
                    raise NotFoundError("User not found")

                if not verify_password(current_password, user.hashed_password):
                    return PasswordResult(
                        success=False,
                        message="Current password is incorrect",
                    )

                strength = validate_password_strength(new_password)
                if not strength.is_valid:
                    return PasswordResult(
                        success=False,
                        message="New password does not meet requirements: "
                        + ", ".join(strength.feedback),
                        feedback=strength.feedback,
                    )

                if verify_password(new_password, user.hashed_password):
                    return PasswordResult(
                        success=False,
                        message="New password must be different from current password",
                    )

                user.hashed_password = hash_password(new_password, sensitive=True)

        logger.info(f"Password changed for user {user_id}")
        return PasswordResult(
            success=True,
            message="Password has been changed successfully",
        )

    async def cleanup_expired_tokens(self) -> int:
        """Видаляє прострочені та використані токени. Помилки лише логуються."""
        try:
            async with self.database.session() as db:
                async with db.begin():
                    result = await db.execute(
                        delete(PasswordReset)
                        .where(
                            or_(
                                PasswordReset.expires_at < utcnow(),
                                PasswordReset.used.is_(True),
                            ),
                        )
                        .execution_options(synchronize_session=False),
                    )
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up expired reset tokens: {e}")
            return 0

        logger.info(f"Removed {result.rowcount} expired or used reset tokens")
        return result.rowcount
