"""
mailer.py -- Outbound transactional email over SMTP.

Used for password reset links and coach invitations. Delivery errors
(smtplib.SMTPException, OSError) propagate to the caller, which decides
whether the failure is user-visible. Routes in api/ log and swallow them so
a broken SMTP relay never reveals whether an account exists.

Usage:
    mailer = Mailer(get_settings())
    mailer.send("user@example.com", "Subject", "plain text body")
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from core.config import Settings

logger = logging.getLogger("fitcoach.mail")


class Mailer:
    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_user
        self.password = settings.smtp_pass
        self.sender = settings.smtp_from
        self.starttls = settings.smtp_starttls
        # Test runs never talk to a relay.
        self.enabled = settings.environment != "test"
        self._warned = False

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def send(self, to_email: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """Send one message. Returns True if handed to the relay, False if skipped."""
        if not self.enabled:
            logger.debug("Email disabled, skipping message to %s: %s", to_email, subject)
            return False
        if not self.configured:
            if not self._warned:
                logger.warning("SMTP is not configured; outgoing email will be skipped.")
                self._warned = True
            logger.info("Would send email to %s: %s", to_email, subject)
            return False

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_email
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.starttls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("Email sent to %s: %s", to_email, subject)
        return True
