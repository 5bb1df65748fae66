from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from fastapi import HTTPException, status
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import config

if TYPE_CHECKING:
    from app.models.user import User


def utcnow() -> datetime:
    """Поточний час у UTC без tzinfo, саме так зберігаються всі дати в БД."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def create_access_token(user: "User", expires_delta: Optional[timedelta] = None) -> str:
    """Створює JWT-токен з ідентичністю та роллю користувача."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "id": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }

    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_jwt_token(token: str) -> dict:
    """Розшифровує JWT-токен та повертає його дані"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except JWTError:
        raise credentials_exception

    token_data = {
        "id": payload.get("id"),
        "email": payload.get("email"),
        "role": payload.get("role"),
        "exp": payload.get("exp"),
    }

    # Переконуємось, що всі ключові поля є в токені
    if None in token_data.values():
        raise credentials_exception

    return token_data
