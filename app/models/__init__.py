# Import all models here
# This way when we import Base all models are registered in its metadata
# and create_all() sees every table

from app.dependencies.database import Base
from app.models.book import Book
from app.models.booking import Booking, BookingStatus
from app.models.password_reset import EmailVerification, PasswordReset
from app.models.user import User, UserRole

__all__ = [
    "Base",
    "Book",
    "Booking",
    "BookingStatus",
    "EmailVerification",
    "PasswordReset",
    "User",
    "UserRole",
]
