import logging

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, config
from app.exceptions.errors import ConflictError
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

# Категорія "sensitive" з вищою вартістю для скидання та зміни пароля
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=config.BCRYPT_ROUNDS,
    sensitive__bcrypt__rounds=config.BCRYPT_SENSITIVE_ROUNDS,
)


def hash_password(password: str, sensitive: bool = False) -> str:
    return pwd_context.hash(password, category="sensitive" if sensitive else None)


def verify_password(password: str, hashed_password: str) -> bool:
    return pwd_context.verify(password, hashed_password)


async def create_admin(db: AsyncSession, settings: Settings = config):
    """Функція для створення адміністратора під час запуску сервера."""

    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASS:
        logger.warning(
            "⚠️ ADMIN_EMAIL або ADMIN_PASS не встановлені в .env! Пропускаємо створення адміністратора.",
        )
        return None

    admin_email = settings.ADMIN_EMAIL.lower()

    # Перевіряємо, чи існує адміністратор з таким email
    result = await db.execute(select(User).where(User.email == admin_email))
    existing_admin = result.scalar_one_or_none()

    if existing_admin:
        logger.info(
            f"✅ Адміністратор {existing_admin.name} вже існує. Пропускаємо створення.",
        )
        return existing_admin

    admin = User(
        name=settings.ADMIN_NAME,
        email=admin_email,
        hashed_password=hash_password(settings.ADMIN_PASS),
        role=UserRole.ADMIN,
        is_verified=True,
    )

    db.add(admin)
    await db.commit()
    logger.info(f"🆕 Адміністратор {admin.name} створений успішно!")
    return admin


async def create_user(
    db: AsyncSession,
    name: str,
    email: str,
    password: str,
    role: UserRole = UserRole.USER,
) -> User:
    """Створення користувача без перевірки пароля (вона вже в схемі)."""

    existing_user = await db.scalar(select(User).where(User.email == email.lower()))
    if existing_user:
        raise ConflictError("Email already registered")

    user = User(
        name=name.strip(),
        email=email.lower(),
        hashed_password=hash_password(password),
        role=role,
        is_verified=False,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        # Паралельна реєстрація з тим самим email
        await db.rollback()
        raise ConflictError("Email already registered")
    return user
