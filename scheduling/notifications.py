"""
Mail and HTTP collaborators used by after-run callbacks.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)


class SmtpMailSender:
    """Sends plain-text mail through an SMTP server."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 25,
        sender: str = "cron-events@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False,
        use_ssl: bool = False,
        timeout: int = 30
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_config(cls, mail_config) -> 'SmtpMailSender':
        """Create a sender from a MailConfig."""
        return cls(
            host=mail_config.host,
            port=mail_config.port,
            sender=mail_config.sender,
            username=mail_config.username,
            password=mail_config.password,
            use_tls=mail_config.use_tls,
            use_ssl=mail_config.use_ssl
        )

    def send(self, subject: str, body: str, recipients: List[str]):
        """
        Send a message.

        Args:
            subject: Subject line
            body: Plain-text body
            recipients: List of recipient addresses
        """
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)

        if self.use_ssl:
            smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)

        with smtp:
            if self.use_tls and not self.use_ssl:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.sendmail(self.sender, recipients, msg.as_string())

        logger.info(f"Sent '{subject}' to {len(recipients)} recipient(s)")


class RequestsHttpClient:
    """Fire-and-forget HTTP GET client."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def get(self, url: str):
        """Issue a GET request and discard the response."""
        try:
            response = requests.get(url, timeout=self.timeout)
            logger.info(f"Pinged {url} (status: {response.status_code})")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Ping failed for {url}: {e}")
