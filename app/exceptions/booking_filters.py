from typing import Optional

from sqlalchemy.sql import Select, or_

from app.models.book import Book
from app.models.booking import Booking, BookingStatus
from app.models.user import User


def apply_booking_filters(
    query: Select,
    user_id: Optional[int] = None,
    book_id: Optional[int] = None,
    status: Optional[BookingStatus] = None,
    search: Optional[str] = None,
) -> Select:
    if user_id is not None:
        query = query.where(Booking.user_id == user_id)
    if book_id is not None:
        query = query.where(Booking.book_id == book_id)
    if status is not None:
        query = query.where(Booking.status == status)

    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = (
            query.join(User, User.id == Booking.user_id)
            .join(Book, Book.id == Booking.book_id)
            .where(
                or_(
                    User.name.ilike(pattern),
                    User.email.ilike(pattern),
                    Book.title.ilike(pattern),
                    Book.author.ilike(pattern),
                ),
            )
        )

    return query
