from fastapi import Request

from app.services.booking_service import BookingManager
from app.services.email_service import NotificationSender
from app.services.password_service import PasswordRecovery


def get_booking_manager(request: Request) -> BookingManager:
    return request.app.state.booking_manager


def get_password_recovery(request: Request) -> PasswordRecovery:
    return request.app.state.password_recovery


def get_notifier(request: Request) -> NotificationSender:
    return request.app.state.notifier
