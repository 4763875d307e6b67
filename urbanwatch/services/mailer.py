"""
SMTP mailer for citizen notifications.

smtplib is blocking, so each send runs in a worker thread.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Any

from urbanwatch.config import get_logger
from urbanwatch.errors import UpstreamIntegrationError

logger = get_logger(__name__)


def build_status_update_email(
    concern: dict[str, Any],
    previous_status: str,
    new_status: str,
    actor_name: str,
    remarks: str | None,
) -> tuple[str, str]:
    """
    Build subject and plain-text body for a concern status update.

    Returns:
        Tuple of (subject, body).
    """
    subject = f"Concern Status Update - {new_status.capitalize()}"
    lines = [
        "Good day,",
        "",
        f"Your concern \"{concern.get('title')}\" ({concern.get('tracking_code')}) "
        f"has been updated.",
        "",
        f"Previous status: {previous_status.capitalize()}",
        f"New status: {new_status.capitalize()}",
        f"Updated by: {actor_name}",
    ]
    if remarks:
        lines.append(f"Remarks: {remarks}")
    lines += [
        "",
        "Thank you for helping keep our community safe.",
        "UrbanWatch",
    ]
    return subject, "\n".join(lines)


class SmtpMailer:
    """Sends plain-text email through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        sender: str = "UrbanWatch <no-reply@urbanwatch.local>",
        use_tls: bool = True,
        timeout: float = 5.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._sender = sender
        self._use_tls = use_tls
        self._timeout = timeout

    def _send_blocking(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        """
        Send one email.

        Raises:
            UpstreamIntegrationError: If the SMTP exchange fails.
        """
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed", subject=subject, error=str(e))
            raise UpstreamIntegrationError(
                f"Failed to send email: {e}",
                service="smtp",
            ) from e

        logger.info("Email sent", subject=subject)
