"""
Outbound notification channel.

Alert notifications are plain-text e-mails sent through Django's configured
mail backend (SMTP in deployment, console/locmem in development and tests).
"""
import logging
from typing import List, Optional
from django.conf import settings
from django.core.mail import send_mail as django_send_mail

logger = logging.getLogger(__name__)


class EmailServiceError(Exception):
    """Raised when a notification could not be delivered."""
    pass


class EmailService:
    """
    Notification channel taking (recipients, subject, body).
    """

    @classmethod
    def send_email(
        cls,
        to_emails: List[str],
        subject: str,
        body: str,
        from_email: Optional[str] = None,
    ) -> bool:
        """
        Send a plain-text e-mail.

        Args:
            to_emails: List of recipient email addresses
            subject: Email subject line
            body: Plain-text body
            from_email: Sender email (DEFAULT_FROM_EMAIL if not provided)

        Returns:
            True if the backend accepted the message, False when there are
            no recipients

        Raises:
            EmailServiceError: If the mail backend fails
        """
        recipients = [email for email in (to_emails or []) if email]
        if not recipients:
            logger.warning(f"No recipients configured for email '{subject}', skipping")
            return False

        try:
            sent = django_send_mail(
                subject=subject,
                message=body,
                from_email=from_email or settings.DEFAULT_FROM_EMAIL,
                recipient_list=recipients,
                fail_silently=False,
            )
        except Exception as e:
            logger.error(f"Failed to send email '{subject}': {e}")
            raise EmailServiceError(f"Email sending failed: {e}") from e

        logger.info(
            f"Email sent: {subject}",
            extra={'recipient_count': len(recipients)}
        )
        return sent > 0
