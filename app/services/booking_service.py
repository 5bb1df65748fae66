import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.config import config
from app.dependencies.database import Database
from app.exceptions.booking_filters import apply_booking_filters
from app.exceptions.errors import (
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from app.models.book import Book
from app.models.booking import ACTIVE_STATUSES, Booking, BookingStatus
from app.services.email_service import NotificationSender
from app.services.email_templates import booking_status_email
from app.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# Дозволені переходи для кожного статусу
ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.APPROVED, BookingStatus.REJECTED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.RETURNED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.RETURNED: frozenset(),
    BookingStatus.OVERDUE: frozenset(),
}

BOOK_NOT_AVAILABLE = "Book is not available for booking"
DUPLICATE_BOOKING = "You already have a pending or approved booking for this book"


@dataclass
class BookingFilters:
    user_id: Optional[int] = None
    book_id: Optional[int] = None
    status: Optional[BookingStatus] = None
    search: Optional[str] = None


def calculate_overdue_fee(
    return_date: datetime,
    actual_return_date: datetime,
    fee_per_day: Decimal = Decimal("1.00"),
) -> Decimal:
    """Штраф за прострочення: кожна повна чи неповна доба після return_date."""
    if actual_return_date <= return_date:
        return Decimal("0.00")

    days, remainder = divmod(actual_return_date - return_date, timedelta(days=1))
    if remainder:
        days += 1
    return (fee_per_day * days).quantize(Decimal("0.01"))


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class BookingManager:
    """Життєвий цикл бронювань та доступність книг.

    Кожна операція виконується в одній транзакції: статус бронювання і
    прапорець Book.is_available змінюються разом або не змінюються взагалі.
    """

    def __init__(
        self,
        database: Database,
        notifier: Optional[NotificationSender] = None,
        fee_per_day: Decimal = config.OVERDUE_FEE_PER_DAY,
    ):
        self.database = database
        self.notifier = notifier
        self.fee_per_day = fee_per_day

    async def create_booking(
        self,
        user_id: int,
        book_id: int,
        borrow_date: datetime,
        return_date: datetime,
    ) -> Booking:
        borrow_date = to_naive_utc(borrow_date)
        return_date = to_naive_utc(return_date)

        if return_date <= borrow_date:
            raise InvalidInputError(
                "Return date must be after borrow date",
                feedback=["returnDate: must be after borrowDate"],
            )

        async with self.database.session() as db:
            async with db.begin():
                book = await db.scalar(
                    select(Book).where(Book.id == book_id).with_for_update(),
                )
                if book is None:
                    raise NotFoundError("Book not found")

                if not book.is_available:
                    raise ConflictError(BOOK_NOT_AVAILABLE)

                existing_booking = await db.scalar(
                    select(Booking.id).where(
                        Booking.user_id == user_id,
                        Booking.book_id == book_id,
                        Booking.status.in_(ACTIVE_STATUSES),
                    ),
                )
                if existing_booking is not None:
                    raise ConflictError(DUPLICATE_BOOKING)

                booking = Booking(
                    user_id=user_id,
                    book_id=book_id,
                    status=BookingStatus.PENDING,
                    borrow_date=borrow_date,
                    return_date=return_date,
                    overdue_fee=Decimal("0.00"),
                )
                db.add(booking)

                try:
                    await db.flush()
                except IntegrityError:
                    # Паралельний запит встиг створити таке ж бронювання
                    raise ConflictError(DUPLICATE_BOOKING)

            logger.info(
                f"Booking {booking.id} created by user {user_id} for book {book_id}",
            )
            return await self._load(db, booking.id)

    async def get_booking(self, booking_id: int) -> Optional[Booking]:
        async with self.database.session() as db:
            return await self._load(db, booking_id)

    async def list_bookings(
        self,
        filters: Optional[BookingFilters] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[int, List[Booking]]:
        if page < 1:
            raise InvalidInputError("Page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

        filters = filters or BookingFilters()
        query = apply_booking_filters(
            select(Booking),
            user_id=filters.user_id,
            book_id=filters.book_id,
            status=filters.status,
            search=filters.search,
        )

        async with self.database.session() as db:
            total = await db.scalar(select(func.count()).select_from(query.subquery()))

            result = await db.execute(
                query.options(joinedload(Booking.user), joinedload(Booking.book))
                .order_by(Booking.created_at.desc(), Booking.id.desc())
                .limit(limit)
                .offset((page - 1) * limit),
            )
            bookings = list(result.scalars().unique().all())

        return total or 0, bookings

    async def update_booking_status(
        self,
        booking_id: int,
        status: BookingStatus,
    ) -> Optional[Booking]:
        """Адміністратор підтверджує або відхиляє бронювання.

        Повертає None, якщо бронювання не існує.
        """
        try:
            status = BookingStatus(status)
        except ValueError:
            raise InvalidInputError(f"Unknown booking status {status}")

        if status not in (BookingStatus.APPROVED, BookingStatus.REJECTED):
            raise InvalidInputError(
                f"Status must be {BookingStatus.APPROVED.value} or {BookingStatus.REJECTED.value}",
            )

        async with self.database.session() as db:
            async with db.begin():
                booking = await self._lock(db, booking_id)
                if booking is None:
                    return None

                if not can_transition(booking.status, status):
                    raise InvalidStateError(
                        f"Only pending bookings can be {status.value.lower()}",
                    )

                if status == BookingStatus.APPROVED:
                    # Точка резервування: книга стає недоступною
                    claimed = await db.execute(
                        update(Book)
                        .where(Book.id == booking.book_id, Book.is_available.is_(True))
                        .values(is_available=False)
                        .execution_options(synchronize_session=False),
                    )
                    if claimed.rowcount != 1:
                        raise ConflictError(BOOK_NOT_AVAILABLE)
                    booking.status = BookingStatus.APPROVED
                    try:
                        await db.flush()
                    except IntegrityError:
                        raise ConflictError(BOOK_NOT_AVAILABLE)
                elif status == BookingStatus.REJECTED:
                    booking.status = BookingStatus.REJECTED
                    await db.flush()
                    await self._sync_availability(db, booking.book_id)
                else:
                    raise InvalidInputError(f"Unsupported status {status.value}")

            logger.info(f"Booking {booking_id} {status.value.lower()}")
            booking = await self._load(db, booking_id)

        await self._notify(booking)
        return booking

    async def approve_booking(self, booking_id: int) -> Optional[Booking]:
        return await self.update_booking_status(booking_id, BookingStatus.APPROVED)

    async def reject_booking(self, booking_id: int) -> Optional[Booking]:
        return await self.update_booking_status(booking_id, BookingStatus.REJECTED)

    async def return_booking(
        self,
        booking_id: int,
        actual_return_date: Optional[datetime] = None,
    ) -> Booking:
        actual_return_date = (
            to_naive_utc(actual_return_date) if actual_return_date else utcnow()
        )

        async with self.database.session() as db:
            async with db.begin():
                booking = await self._lock(db, booking_id)
                if booking is None:
                    raise NotFoundError("Booking not found")

                if not can_transition(booking.status, BookingStatus.RETURNED):
                    raise InvalidStateError("Only approved bookings can be returned")

                booking.overdue_fee = calculate_overdue_fee(
                    booking.return_date,
                    actual_return_date,
                    self.fee_per_day,
                )
                booking.actual_return_date = actual_return_date
                booking.status = BookingStatus.RETURNED
                await db.flush()
                await self._sync_availability(db, booking.book_id)

            logger.info(
                f"Booking {booking_id} returned, overdue fee {booking.overdue_fee}",
            )
            booking = await self._load(db, booking_id)

        await self._notify(booking)
        return booking

    async def delete_booking(self, booking_id: int) -> bool:
        """Скасування бронювання. Дозволено лише для PENDING."""
        async with self.database.session() as db:
            async with db.begin():
                booking = await self._lock(db, booking_id)
                if booking is None:
                    raise NotFoundError("Booking not found")

                if booking.status != BookingStatus.PENDING:
                    raise InvalidStateError("Only pending bookings can be cancelled")

                await db.delete(booking)

        logger.info(f"Booking {booking_id} cancelled")
        return True

    async def _lock(self, db: AsyncSession, booking_id: int) -> Optional[Booking]:
        return await db.scalar(
            select(Booking).where(Booking.id == booking_id).with_for_update(),
        )

    async def _load(self, db: AsyncSession, booking_id: int) -> Optional[Booking]:
        result = await db.execute(
            select(Booking)
            .options(joinedload(Booking.user), joinedload(Booking.book))
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True),
        )
        return result.scalars().first()

    async def _sync_availability(self, db: AsyncSession, book_id: int):
        """Книга доступна тоді й лише тоді, коли немає підтвердженого бронювання."""
        has_approved = exists().where(
            Booking.book_id == book_id,
            Booking.status == BookingStatus.APPROVED,
        )
        await db.execute(
            update(Book)
            .where(Book.id == book_id)
            .values(is_available=~has_approved)
            .execution_options(synchronize_session=False),
        )

    async def _notify(self, booking: Booking):
        if self.notifier is None:
            return

        subject, body = booking_status_email(booking)
        result = await self.notifier.send(booking.user.email, subject, body)
        if not result.delivered:
            # Лист не критичний для зміни статусу
            logger.warning(
                f"Booking {booking.id} notification to {booking.user.email} failed: {result.error}",
            )
