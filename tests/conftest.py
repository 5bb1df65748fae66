import os

# Налаштування мають бути в оточенні до імпорту app.config
os.environ.update(
    {
        "ENVIRONMENT": "test",
        "DATABASE_URL": "sqlite+aiosqlite:///./library_test.db",
        "SECRET_KEY": "test-secret-key",
        "BCRYPT_ROUNDS": "4",
        "BCRYPT_SENSITIVE_ROUNDS": "4",
        "COOKIE_SECURE": "false",
        "FRONTEND_URL": "http://frontend.library.org",
    },
)

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import pytest
from fakeredis import aioredis as fake_aioredis
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from app.config import Settings
from app.dependencies.database import Database
from app.main import create_app
from app.models.book import Book
from app.models.password_reset import PasswordReset
from app.models.user import User, UserRole
from app.roles import hash_password
from app.services.booking_service import BookingManager
from app.services.email_service import NotificationResult
from app.services.password_service import PasswordRecovery, generate_token
from app.utils import create_access_token, utcnow

DEFAULT_PASSWORD = "Reader123!"


class FakeNotifier:
    """Записує листи замість SMTP. fail=True імітує недоставку."""

    def __init__(self):
        self.sent: List[dict] = []
        self.fail = False

    async def send(self, to_email, subject, message, html=True):
        if self.fail:
            return NotificationResult(delivered=False, error="SMTP server is not configured.")

        self.sent.append({"to": to_email, "subject": subject, "message": message})
        return NotificationResult(delivered=True)


def _settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "test",
        "BCRYPT_ROUNDS": 4,
        "BCRYPT_SENSITIVE_ROUNDS": 4,
        "COOKIE_SECURE": False,
        "FRONTEND_URL": "http://frontend.library.org",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return _settings()


@pytest.fixture
def production_settings():
    return _settings(ENVIRONMENT="production")


@pytest.fixture
def database(tmp_path):
    # Окремий файл БД для кожного тесту
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}", poolclass=NullPool)
    asyncio.run(db.create_all())
    yield db
    asyncio.run(db.dispose())


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def manager(database, notifier):
    return BookingManager(database, notifier, fee_per_day=Decimal("1.00"))


@pytest.fixture
def recovery(database, notifier, settings):
    return PasswordRecovery(database, notifier, settings)


@pytest.fixture
def client(settings, database, notifier):
    app = create_app(
        settings,
        database=database,
        notifier=notifier,
        redis=fake_aioredis.FakeRedis(decode_responses=True),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(database):
    def _make_user(
        email: str = "reader@library.org",
        name: str = "Reader",
        password: str = DEFAULT_PASSWORD,
        role: UserRole = UserRole.USER,
        is_verified: bool = True,
    ) -> User:
        async def _create():
            async with database.session() as db:
                user = User(
                    name=name,
                    email=email,
                    hashed_password=hash_password(password),
                    role=role,
                    is_verified=is_verified,
                )
                db.add(user)
                await db.commit()
                await db.refresh(user)
                return user

        return asyncio.run(_create())

    return _make_user


@pytest.fixture
def make_admin(make_user):
    def _make_admin(email: str = "admin@library.org") -> User:
        return make_user(email=email, name="Admin", role=UserRole.ADMIN)

    return _make_admin


@pytest.fixture
def make_book(database):
    def _make_book(
        title: str = "The Hobbit",
        author: str = "J. R. R. Tolkien",
        is_available: bool = True,
    ) -> Book:
        async def _create():
            async with database.session() as db:
                book = Book(title=title, author=author, is_available=is_available)
                db.add(book)
                await db.commit()
                await db.refresh(book)
                return book

        return asyncio.run(_create())

    return _make_book


@pytest.fixture
def load(database):
    """Свіжий стан рядка з БД: load(Book, book_id)."""

    def _load(model, pk):
        async def _get():
            async with database.session() as db:
                return await db.get(model, pk)

        return asyncio.run(_get())

    return _load


@pytest.fixture
def make_reset_token(database):
    def _make_reset_token(
        user: User,
        token: Optional[str] = None,
        created_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        used: bool = False,
    ) -> str:
        token = token or generate_token()
        created_at = created_at or utcnow()

        async def _create():
            async with database.session() as db:
                db.add(
                    PasswordReset(
                        user_id=user.id,
                        token=token,
                        created_at=created_at,
                        expires_at=expires_at or created_at + timedelta(hours=1),
                        used=used,
                    ),
                )
                await db.commit()

        asyncio.run(_create())
        return token

    return _make_reset_token


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _auth_headers
