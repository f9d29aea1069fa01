"""Celery tasks for outgoing email."""

import logging
import smtplib
from email.message import EmailMessage

from src.celery_app import app as celery_app
from src.config import get_settings

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3, name="tasks.send_email")
def send_email(self, to: str, subject: str, body: str) -> bool:
    """Deliver one plain-text email over SMTP.

    Args:
        to: Recipient address
        subject: Subject line
        body: Plain-text body

    Returns:
        True if the message was handed to the SMTP server, False if SMTP
        is not configured
    """
    settings = get_settings()
    if not settings.smtp_host:
        logger.info(f"SMTP not configured, skipping email '{subject}' to {to}")
        return False

    message = EmailMessage()
    message["From"] = settings.mail_from
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(f"Email delivery to {to} failed, retrying: {e}")
        raise self.retry(exc=e, countdown=60) from e

    logger.info(f"Sent email '{subject}' to {to}")
    return True
