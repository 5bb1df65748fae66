import logging
from contextlib import asynccontextmanager
from logging.config import dictConfig
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import LogConfig, Settings, config
from app.dependencies.cache import create_redis
from app.dependencies.database import Database
from app.exceptions.errors import ErrorKind, LibraryError
from app.middlewares.middlewares import setup_middlewares
from app.roles import create_admin
from app.routers import auth, books, bookings
from app.services.booking_service import BookingManager
from app.services.email_service import NotificationSender, SmtpNotificationSender
from app.services.password_service import PasswordRecovery

dictConfig(LogConfig().model_dump())
logging.getLogger("app").setLevel(config.LOG_LEVEL.upper())
logger = logging.getLogger("app")

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управління ресурсами під час життєвого циклу API"""

    database: Database = app.state.database
    try:
        await database.create_all()  # Створення таблиць БД

        async with database.session() as db:
            await create_admin(db, app.state.settings)  # Створення адміна

        yield

    except Exception as e:
        logger.error(f"❌ Помилка при запуску сервера: {e}")
        raise

    finally:
        await app.state.redis.aclose()
        logger.info("🔴 Підключення до Redis закрито")
        await database.dispose()


async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    feedback = [
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid input",
            "kind": ErrorKind.VALIDATION.value,
            "feedback": feedback,
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app(
    settings: Settings = config,
    database: Optional[Database] = None,
    notifier: Optional[NotificationSender] = None,
    redis=None,
) -> FastAPI:
    app = FastAPI(
        lifespan=lifespan,
        title="Library Booking API",
        description="API для бронювання книг у бібліотеці",
        version="1.0",
        swagger_ui_parameters={"persistAuthorization": True},
    )

    database = database or Database.from_settings(settings)
    notifier = notifier or SmtpNotificationSender(settings)

    app.state.settings = settings
    app.state.database = database
    app.state.redis = redis if redis is not None else create_redis(settings)
    app.state.notifier = notifier
    app.state.booking_manager = BookingManager(
        database,
        notifier,
        fee_per_day=settings.OVERDUE_FEE_PER_DAY,
    )
    app.state.password_recovery = PasswordRecovery(database, notifier, settings)

    setup_middlewares(app, settings)

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(books.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")

    return app


app = create_app()

logger.info("✅ Library Booking API успішно запущено!")
