from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Numeric, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.dependencies.database import Base
from app.utils import utcnow

if TYPE_CHECKING:
    from app.models.book import Book
    from app.models.user import User


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED = "RETURNED"
    # Зарезервований статус: жоден процес його не встановлює
    OVERDUE = "OVERDUE"


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)

_ACTIVE_WHERE = text("status IN ('PENDING', 'APPROVED')")
_APPROVED_WHERE = text("status = 'APPROVED'")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # Не більше одного активного бронювання користувача на книгу
        Index(
            "uq_bookings_active_user_book",
            "user_id",
            "book_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        # Не більше одного підтвердженого бронювання на книгу
        Index(
            "uq_bookings_approved_book",
            "book_id",
            unique=True,
            postgresql_where=_APPROVED_WHERE,
            sqlite_where=_APPROVED_WHERE,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    book_id: Mapped[int] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
    )
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, native_enum=False, length=20),
        default=BookingStatus.PENDING,
    )
    borrow_date: Mapped[datetime] = mapped_column(DateTime)
    return_date: Mapped[datetime] = mapped_column(DateTime)
    actual_return_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    overdue_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
    )

    user: Mapped["User"] = relationship(back_populates="bookings")
    book: Mapped["Book"] = relationship(back_populates="bookings")
