import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from app.exceptions.errors import (
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from app.models.book import Book
from app.models.booking import Booking, BookingStatus
from app.services import booking_service
from app.services.booking_service import (
    ALLOWED_TRANSITIONS,
    BookingFilters,
    calculate_overdue_fee,
    can_transition,
)
from app.utils import utcnow

BORROW = datetime(2024, 1, 1)
RETURN = datetime(2024, 1, 15)


def run(coro):
    return asyncio.run(coro)


def test_borrow_flow_updates_availability_and_fee(manager, make_user, make_book, load, notifier):
    user = make_user()
    book = make_book()

    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    assert booking.status == BookingStatus.PENDING
    assert booking.overdue_fee == Decimal("0")
    assert load(Book, book.id).is_available is True

    approved = run(manager.approve_booking(booking.id))
    assert approved.status == BookingStatus.APPROVED
    assert load(Book, book.id).is_available is False

    returned = run(manager.return_booking(booking.id, datetime(2024, 1, 20)))
    assert returned.status == BookingStatus.RETURNED
    assert returned.actual_return_date == datetime(2024, 1, 20)
    assert returned.overdue_fee == Decimal("5.00")
    assert load(Book, book.id).is_available is True

    assert [mail["to"] for mail in notifier.sent] == [user.email, user.email]


def test_duplicate_active_booking_is_rejected(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    with pytest.raises(ConflictError, match="already have a pending or approved booking"):
        run(manager.create_booking(user.id, book.id, BORROW, RETURN))


def test_rebooking_allowed_after_rejection(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    first = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    run(manager.reject_booking(first.id))

    second = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    assert second.status == BookingStatus.PENDING


def test_unavailable_book_cannot_be_booked(manager, make_user, make_book):
    first_reader = make_user()
    second_reader = make_user(email="second@library.org", name="Second")
    book = make_book()

    booking = run(manager.create_booking(first_reader.id, book.id, BORROW, RETURN))
    run(manager.approve_booking(booking.id))

    with pytest.raises(ConflictError, match="Book is not available for booking"):
        run(manager.create_booking(second_reader.id, book.id, BORROW, RETURN))


def test_missing_book(manager, make_user):
    user = make_user()
    with pytest.raises(NotFoundError, match="Book not found"):
        run(manager.create_booking(user.id, 999, BORROW, RETURN))


@pytest.mark.parametrize(
    "return_date",
    [BORROW, BORROW - timedelta(days=1)],
    ids=["same-day", "before-borrow"],
)
def test_return_date_must_follow_borrow_date(manager, make_user, make_book, return_date):
    user = make_user()
    book = make_book()

    with pytest.raises(InvalidInputError, match="Return date must be after borrow date"):
        run(manager.create_booking(user.id, book.id, BORROW, return_date))


def test_second_approval_on_same_book_conflicts(manager, make_user, make_book, load):
    first_reader = make_user()
    second_reader = make_user(email="second@library.org", name="Second")
    book = make_book()

    first = run(manager.create_booking(first_reader.id, book.id, BORROW, RETURN))
    second = run(manager.create_booking(second_reader.id, book.id, BORROW, RETURN))
    run(manager.approve_booking(first.id))

    with pytest.raises(ConflictError, match="Book is not available for booking"):
        run(manager.approve_booking(second.id))

    assert run(manager.get_booking(second.id)).status == BookingStatus.PENDING
    assert load(Book, book.id).is_available is False


def test_rejecting_keeps_book_unavailable_while_approved_booking_exists(
    manager, make_user, make_book, load,
):
    first_reader = make_user()
    second_reader = make_user(email="second@library.org", name="Second")
    book = make_book()

    first = run(manager.create_booking(first_reader.id, book.id, BORROW, RETURN))
    second = run(manager.create_booking(second_reader.id, book.id, BORROW, RETURN))
    run(manager.approve_booking(first.id))

    rejected = run(manager.reject_booking(second.id))
    assert rejected.status == BookingStatus.REJECTED
    assert load(Book, book.id).is_available is False


def test_approve_and_reject_missing_booking_return_none(manager):
    assert run(manager.approve_booking(404)) is None
    assert run(manager.reject_booking(404)) is None


def test_only_pending_bookings_can_be_approved(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    run(manager.reject_booking(booking.id))

    with pytest.raises(InvalidStateError):
        run(manager.approve_booking(booking.id))


def test_update_status_rejects_unsupported_target(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    with pytest.raises(InvalidInputError):
        run(manager.update_booking_status(booking.id, BookingStatus.RETURNED))


def test_return_requires_approved_booking(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    with pytest.raises(InvalidStateError, match="Only approved bookings can be returned"):
        run(manager.return_booking(booking.id))

    with pytest.raises(NotFoundError):
        run(manager.return_booking(404))


def test_return_without_date_uses_current_time(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(
        manager.create_booking(
            user.id,
            book.id,
            utcnow(),
            utcnow() + timedelta(days=14),
        ),
    )
    run(manager.approve_booking(booking.id))

    returned = run(manager.return_booking(booking.id))
    assert returned.actual_return_date is not None
    assert returned.overdue_fee == Decimal("0")


def test_cancel_after_approval_fails_and_keeps_row(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    run(manager.approve_booking(booking.id))

    with pytest.raises(InvalidStateError, match="Only pending bookings can be cancelled"):
        run(manager.delete_booking(booking.id))

    assert run(manager.get_booking(booking.id)).status == BookingStatus.APPROVED


def test_cancel_pending_booking_deletes_it(manager, make_user, make_book, load):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    assert run(manager.delete_booking(booking.id)) is True
    assert run(manager.get_booking(booking.id)) is None
    assert load(Book, book.id).is_available is True


@pytest.mark.parametrize("final_action", ["reject", "return"])
def test_cancel_closed_booking_fails(manager, make_user, make_book, final_action):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))
    if final_action == "reject":
        run(manager.reject_booking(booking.id))
    else:
        run(manager.approve_booking(booking.id))
        run(manager.return_booking(booking.id, RETURN))

    with pytest.raises(InvalidStateError):
        run(manager.delete_booking(booking.id))


def test_cancel_missing_booking(manager):
    with pytest.raises(NotFoundError, match="Booking not found"):
        run(manager.delete_booking(404))


def test_failed_notification_does_not_block_status_change(
    manager, make_user, make_book, notifier,
):
    notifier.fail = True
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    approved = run(manager.approve_booking(booking.id))
    assert approved.status == BookingStatus.APPROVED
    assert notifier.sent == []


@pytest.mark.parametrize(
    "actual, expected",
    [
        (RETURN - timedelta(days=2), Decimal("0.00")),
        (RETURN, Decimal("0.00")),
        (RETURN + timedelta(hours=1), Decimal("1.00")),
        (RETURN + timedelta(days=1), Decimal("1.00")),
        (RETURN + timedelta(days=1, seconds=1), Decimal("2.00")),
        (RETURN + timedelta(days=5), Decimal("5.00")),
    ],
)
def test_overdue_fee(actual, expected):
    assert calculate_overdue_fee(RETURN, actual) == expected


def test_overdue_fee_uses_configured_rate():
    fee = calculate_overdue_fee(RETURN, RETURN + timedelta(days=3), Decimal("2.50"))
    assert fee == Decimal("7.50")


def test_transition_table_covers_every_status():
    assert set(ALLOWED_TRANSITIONS) == set(BookingStatus)


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (BookingStatus.PENDING, BookingStatus.APPROVED, True),
        (BookingStatus.PENDING, BookingStatus.REJECTED, True),
        (BookingStatus.PENDING, BookingStatus.RETURNED, False),
        (BookingStatus.APPROVED, BookingStatus.RETURNED, True),
        (BookingStatus.APPROVED, BookingStatus.REJECTED, False),
        (BookingStatus.REJECTED, BookingStatus.APPROVED, False),
        (BookingStatus.RETURNED, BookingStatus.APPROVED, False),
        (BookingStatus.OVERDUE, BookingStatus.RETURNED, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_list_bookings_filters_and_search(manager, make_user, make_book):
    alice = make_user(email="alice@library.org", name="Alice")
    bob = make_user(email="bob@library.org", name="Bob")
    hobbit = make_book()
    dune = make_book(title="Dune", author="Frank Herbert")

    first = run(manager.create_booking(alice.id, hobbit.id, BORROW, RETURN))
    run(manager.create_booking(alice.id, dune.id, BORROW, RETURN))
    run(manager.create_booking(bob.id, dune.id, BORROW, RETURN))
    run(manager.approve_booking(first.id))

    total, bookings = run(manager.list_bookings())
    assert total == 3
    assert bookings[-1].id == first.id

    total, bookings = run(manager.list_bookings(BookingFilters(user_id=alice.id)))
    assert total == 2
    assert {b.user_id for b in bookings} == {alice.id}

    total, bookings = run(
        manager.list_bookings(BookingFilters(status=BookingStatus.APPROVED)),
    )
    assert [b.id for b in bookings] == [first.id]

    total, bookings = run(manager.list_bookings(BookingFilters(search="HERBERT")))
    assert total == 2
    assert all(b.book.title == "Dune" for b in bookings)

    total, _ = run(manager.list_bookings(BookingFilters(search="bob@library")))
    assert total == 1

    total, _ = run(manager.list_bookings(BookingFilters(status=BookingStatus.OVERDUE)))
    assert total == 0


def test_list_bookings_pagination(manager, make_user, make_book):
    user = make_user()
    for title in ("Dune", "Emma", "Ulysses"):
        book = make_book(title=title, author="Various")
        run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    total, bookings = run(manager.list_bookings(page=2, limit=2))
    assert total == 3
    assert len(bookings) == 1

    with pytest.raises(InvalidInputError):
        run(manager.list_bookings(limit=0))
    with pytest.raises(InvalidInputError):
        run(manager.list_bookings(page=0))


def test_status_given_as_plain_string(manager, make_user, make_book):
    user = make_user()
    book = make_book()
    booking = run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    approved = run(manager.update_booking_status(booking.id, "APPROVED"))
    assert approved.status == BookingStatus.APPROVED

    with pytest.raises(InvalidInputError):
        run(manager.update_booking_status(booking.id, "LOST"))


def insert_bookings(database, *rows):
    async def _insert():
        async with database.session() as db:
            for user_id, book_id, status in rows:
                db.add(
                    Booking(
                        user_id=user_id,
                        book_id=book_id,
                        status=status,
                        borrow_date=BORROW,
                        return_date=RETURN,
                    ),
                )
            await db.commit()

    run(_insert())


def test_index_allows_one_active_booking_per_user_and_book(database, make_user, make_book):
    user = make_user()
    book = make_book()

    with pytest.raises(IntegrityError):
        insert_bookings(
            database,
            (user.id, book.id, BookingStatus.PENDING),
            (user.id, book.id, BookingStatus.PENDING),
        )

    insert_bookings(
        database,
        (user.id, book.id, BookingStatus.REJECTED),
        (user.id, book.id, BookingStatus.RETURNED),
        (user.id, book.id, BookingStatus.PENDING),
    )


def test_index_allows_one_approved_booking_per_book(database, make_user, make_book):
    first_reader = make_user()
    second_reader = make_user(email="second@library.org", name="Second")
    book = make_book()

    with pytest.raises(IntegrityError):
        insert_bookings(
            database,
            (first_reader.id, book.id, BookingStatus.APPROVED),
            (second_reader.id, book.id, BookingStatus.APPROVED),
        )


def test_duplicate_caught_by_index_is_conflict(monkeypatch, manager, make_user, make_book):
    user = make_user()
    book = make_book()
    run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    # Перевірка на рівні застосунку нічого не знаходить, дублікат ловить індекс
    monkeypatch.setattr(booking_service, "ACTIVE_STATUSES", ())

    with pytest.raises(ConflictError, match="already have a pending or approved booking"):
        run(manager.create_booking(user.id, book.id, BORROW, RETURN))

    total, _ = run(manager.list_bookings(BookingFilters(user_id=user.id)))
    assert total == 1


def test_second_approval_caught_by_index_is_conflict(
    database, manager, make_user, make_book, load,
):
    first_reader = make_user()
    second_reader = make_user(email="second@library.org", name="Second")
    book = make_book()

    first = run(manager.create_booking(first_reader.id, book.id, BORROW, RETURN))
    second = run(manager.create_booking(second_reader.id, book.id, BORROW, RETURN))
    run(manager.approve_booking(first.id))

    async def _mark_available():
        async with database.session() as db:
            await db.execute(update(Book).where(Book.id == book.id).values(is_available=True))
            await db.commit()

    run(_mark_available())

    with pytest.raises(ConflictError, match="Book is not available for booking"):
        run(manager.approve_booking(second.id))

    assert run(manager.get_booking(second.id)).status == BookingStatus.PENDING
