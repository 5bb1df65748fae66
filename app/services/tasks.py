import asyncio
import logging

from app.config import config
from app.dependencies.database import Database
from app.services.celery_config import celery_app
from app.services.email_service import SmtpNotificationSender
from app.services.password_service import PasswordRecovery

logger = logging.getLogger(__name__)


async def _cleanup_expired_password_resets() -> int:
    database = Database.from_settings(config)
    try:
        recovery = PasswordRecovery(database, SmtpNotificationSender(config), config)
        return await recovery.cleanup_expired_tokens()
    finally:
        await database.dispose()


@celery_app.task
def cleanup_expired_password_resets() -> int:
    """Щогодинне прибирання прострочених і використаних токенів скидання."""
    logger.info("✅ cleanup_expired_password_resets started!")
    return asyncio.run(_cleanup_expired_password_resets())
