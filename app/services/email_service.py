import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from fastapi.concurrency import run_in_threadpool

from app.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    delivered: bool
    error: Optional[str] = None


class NotificationSender(Protocol):
    async def send(
        self,
        to_email: str,
        subject: str,
        message: str,
        html: bool = True,
    ) -> NotificationResult: ...


class EmailClient:
    """Контекстний менеджер для SMTP-з'єднання."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.server = None

    def __enter__(self):
        settings = self.settings
        if not settings.SMTP_SERVER:
            raise ValueError("SMTP server is not configured.")

        try:
            if settings.SMTP_PORT == 587:
                self.server = smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT)
                self.server.starttls()
            elif settings.SMTP_PORT == 465:
                self.server = smtplib.SMTP_SSL(settings.SMTP_SERVER, settings.SMTP_PORT)
            else:
                raise ValueError("Unsupported SMTP port. Use 587 (TLS) or 465 (SSL).")

            if settings.SMTP_USERNAME:
                self.server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
            return self.server
        except Exception as e:
            logger.error(f"Failed to connect to SMTP server: {e}")
            raise

    def __exit__(self, exc_type, exc_value, traceback):
        if self.server:
            self.server.quit()


class SmtpNotificationSender:
    """Надсилає листи через SMTP і повертає явний результат доставки."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _build_message(self, to_email: str, subject: str, message: str, html: bool):
        msg = MIMEMultipart()
        msg["From"] = self.settings.EMAIL_FROM
        msg["To"] = to_email
        msg["Subject"] = subject

        footer = "This is an automated message, please do not reply. Your Library"

        if html:
            full_message = (
                f"{message}<br><hr>"
                f"<p style='color: #888; font-size: 12px; text-align: center;'>{footer}</p>"
            )
            msg.attach(MIMEText(full_message, "html"))
        else:
            msg.attach(MIMEText(f"{message}\n\n{footer}", "plain"))
        return msg

    def _deliver(self, to_email: str, msg: MIMEMultipart):
        with EmailClient(self.settings) as server:
            server.sendmail(self.settings.EMAIL_FROM, to_email, msg.as_string())

    async def send(
        self,
        to_email: str,
        subject: str,
        message: str,
        html: bool = True,
    ) -> NotificationResult:
        msg = self._build_message(to_email, subject, message, html)
        try:
            await run_in_threadpool(self._deliver, to_email, msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.error(f"Email to {to_email} was not delivered: {e}")
            return NotificationResult(delivered=False, error=str(e))

        logger.info(f"Email sent successfully to {to_email}")
        return NotificationResult(delivered=True)
