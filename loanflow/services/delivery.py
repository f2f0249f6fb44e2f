from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loanflow.core.settings import Settings
from loanflow.services.workflow_errors import ConfigurationError, DeliveryError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEmail:
    to: str
    subject: str
    html_body: str


class DeliveryChannel(ABC):
    provider: str = "log"

    def __init__(self, *, sender_name: str = "", regards: str = "", footer: str = ""):
        self.sender_name = sender_name
        self.regards = regards
        self.footer = footer

    def compose(self, body_html: str) -> str:
        return f"{body_html}{self.regards}{self.footer}"

    @abstractmethod
    async def send(self, message: OutboundEmail) -> str | None:
        """Deliver one email.

        Returns the provider message id when there is one and raises
        ``DeliveryError`` when the provider rejects or cannot be reached.
        """


class LogDeliveryChannel(DeliveryChannel):
    provider = "log"

    async def send(self, message: OutboundEmail) -> str | None:
        logger.info("Email (log backend) to=%s subject=%s", message.to, message.subject)
        return None


class SendGridDeliveryChannel(DeliveryChannel):
    provider = "sendgrid"

    def __init__(
        self,
        api_key: str,
        *,
        sender_email: str,
        sender_name: str = "",
        regards: str = "",
        footer: str = "",
    ):
        # Lazy import to avoid requiring the client unless this backend is selected
        from sendgrid import SendGridAPIClient

        super().__init__(sender_name=sender_name, regards=regards, footer=footer)
        self.sender_email = sender_email
        self.client = SendGridAPIClient(api_key)

    def _send_sync(self, message: OutboundEmail) -> str | None:
        from sendgrid.helpers.mail import From, Mail

        mail = Mail(
            from_email=From(self.sender_email, self.sender_name or None),
            to_emails=message.to,
            subject=message.subject,
            html_content=self.compose(message.html_body),
        )
        response = self.client.send(mail)
        if response.status_code >= 400:
            raise DeliveryError(
                f"SendGrid rejected message with status {response.status_code}",
                details={"to": message.to, "status_code": response.status_code},
            )
        return response.headers.get("X-Message-Id", "")

    async def send(self, message: OutboundEmail) -> str | None:
        try:
            return await asyncio.to_thread(self._send_sync, message)
        except DeliveryError:
            raise
        except Exception as exc:
            raise DeliveryError(
                f"Email send failed: {exc}",
                details={"to": message.to},
            ) from exc


def get_delivery_channel(settings: Settings) -> DeliveryChannel:
    if settings.email_backend == "sendgrid":
        if not settings.sendgrid_api_key:
            raise ConfigurationError("SENDGRID_API_KEY is not configured")
        return SendGridDeliveryChannel(
            settings.sendgrid_api_key,
            sender_email=settings.sender_email,
            sender_name=settings.sender_name,
            regards=settings.email_regards,
            footer=settings.email_footer,
        )
    return LogDeliveryChannel(
        sender_name=settings.sender_name,
        regards=settings.email_regards,
        footer=settings.email_footer,
    )
