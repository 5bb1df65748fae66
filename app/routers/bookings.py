import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.dependencies.services import get_booking_manager
from app.exceptions.pagination import paginate_response
from app.models.booking import Booking, BookingStatus
from app.models.user import UserRole
from app.schemas.schemas import (
    BookingCreate,
    BookingPage,
    BookingResponse,
    BookingReturn,
)
from app.services.booking_service import BookingFilters, BookingManager
from app.services.user_service import admin_required, get_token_data

router = APIRouter(prefix="/bookings", tags=["Bookings"])

logger = logging.getLogger(__name__)


def _is_admin(token_data: dict) -> bool:
    return token_data.get("role") == UserRole.ADMIN.value


async def _get_accessible_booking(
    booking_id: int,
    manager: BookingManager,
    token_data: dict,
) -> Booking:
    """Бронювання доступне власнику або адміністратору."""
    booking = await manager.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found",
        )

    if booking.user_id != int(token_data["id"]) and not _is_admin(token_data):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage your own bookings",
        )
    return booking


def _page(total: int, page: int, limit: int, bookings: list) -> dict:
    return paginate_response(
        total=total,
        page=page,
        per_page=limit,
        items=[BookingResponse.model_validate(b) for b in bookings],
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    token_data: dict = Depends(get_token_data),
    manager: BookingManager = Depends(get_booking_manager),
):
    """Читач створює запит на бронювання книги (статус PENDING)."""
    return await manager.create_booking(
        user_id=int(token_data["id"]),
        book_id=booking_data.book_id,
        borrow_date=booking_data.borrow_date,
        return_date=booking_data.return_date,
    )


@router.get("/my", response_model=BookingPage)
async def get_my_bookings(
    token_data: dict = Depends(get_token_data),
    manager: BookingManager = Depends(get_booking_manager),
    status: Optional[BookingStatus] = Query(None, description="Фільтр за статусом"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, description="Номер сторінки"),
    limit: int = Query(10, ge=1, le=100, description="Кількість записів"),
):
    filters = BookingFilters(user_id=int(token_data["id"]), status=status, search=search)
    total, bookings = await manager.list_bookings(filters, page=page, limit=limit)
    return _page(total, page, limit, bookings)


@router.get("", response_model=BookingPage)
async def get_all_bookings(
    _: dict = Depends(admin_required),
    manager: BookingManager = Depends(get_booking_manager),
    user_id: Optional[int] = Query(None, alias="userId"),
    book_id: Optional[int] = Query(None, alias="bookId"),
    status: Optional[BookingStatus] = Query(None, description="Фільтр за статусом"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1, description="Номер сторінки"),
    limit: int = Query(10, ge=1, le=100, description="Кількість записів"),
):
    """📄 Усі бронювання (тільки для адміністратора) з фільтрацією та пагінацією."""
    filters = BookingFilters(
        user_id=user_id,
        book_id=book_id,
        status=status,
        search=search,
    )
    total, bookings = await manager.list_bookings(filters, page=page, limit=limit)
    return _page(total, page, limit, bookings)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    token_data: dict = Depends(get_token_data),
    manager: BookingManager = Depends(get_booking_manager),
):
    return await _get_accessible_booking(booking_id, manager, token_data)


@router.put("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(
    booking_id: int,
    admin: dict = Depends(admin_required),
    manager: BookingManager = Depends(get_booking_manager),
):
    """Адміністратор підтверджує бронювання, книга стає недоступною."""
    booking = await manager.approve_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    logger.info(f"Booking {booking_id} approved by admin {admin['id']}")
    return booking


@router.put("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: int,
    admin: dict = Depends(admin_required),
    manager: BookingManager = Depends(get_booking_manager),
):
    booking = await manager.reject_booking(booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    logger.info(f"Booking {booking_id} rejected by admin {admin['id']}")
    return booking


@router.put("/{booking_id}/return", response_model=BookingResponse)
async def return_booking(
    booking_id: int,
    return_data: Optional[BookingReturn] = None,
    token_data: dict = Depends(get_token_data),
    manager: BookingManager = Depends(get_booking_manager),
):
    """Повернення книги з розрахунком штрафу за прострочення."""
    await _get_accessible_booking(booking_id, manager, token_data)

    actual_return_date = return_data.actual_return_date if return_data else None
    return await manager.return_booking(booking_id, actual_return_date)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_booking(
    booking_id: int,
    token_data: dict = Depends(get_token_data),
    manager: BookingManager = Depends(get_booking_manager),
):
    """Скасування бронювання, лише поки воно PENDING."""
    await _get_accessible_booking(booking_id, manager, token_data)
    await manager.delete_booking(booking_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
