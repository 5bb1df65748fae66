import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies.database import get_db
from app.exceptions.pagination import paginate_response
from app.models.book import Book
from app.schemas.schemas import BookCreate, BookPage, BookResponse
from app.services.user_service import admin_required

router = APIRouter(prefix="/books", tags=["Books"])

logger = logging.getLogger(__name__)


@router.post("", response_model=BookResponse, status_code=status.HTTP_201_CREATED)
async def create_book(
    book_data: BookCreate,
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(admin_required),
):
    """📚 Додавання книги (тільки для адміністратора)."""
    book = Book(**book_data.model_dump(), uploaded_by=admin["id"], is_available=True)
    db.add(book)
    await db.commit()
    await db.refresh(book)

    logger.info(f"Book '{book.title}' added by admin {admin['id']}")
    return book


@router.get("", response_model=BookPage)
async def list_books(
    db: AsyncSession = Depends(get_db),
    page: int = Query(1, ge=1, description="Номер сторінки"),
    limit: int = Query(10, ge=1, le=100, description="Кількість записів"),
):
    total_books = await db.scalar(select(func.count()).select_from(Book))

    result = await db.execute(
        select(Book)
        .order_by(Book.created_at.desc(), Book.id.desc())
        .limit(limit)
        .offset((page - 1) * limit),
    )
    books = result.scalars().all()

    return paginate_response(
        total=total_books,
        page=page,
        per_page=limit,
        items=[BookResponse.model_validate(book) for book in books],
    )


@router.get("/{book_id}", response_model=BookResponse)
async def get_book(book_id: int, db: AsyncSession = Depends(get_db)):
    book = await db.get(Book, book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book
