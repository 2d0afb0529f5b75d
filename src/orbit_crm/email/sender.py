"""Outbound email: Resend / SendGrid integration."""

import logging

import httpx

from orbit_crm.email.templates import EmailContent

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailSender:
    """Sends transactional emails.

    Supports Resend and SendGrid via configuration. Without a provider
    the message is only logged and ``send`` returns False.
    """

    def __init__(
        self,
        provider: str = "",
        api_key: str = "",
        from_email: str = "noreply@orbitcrm.app",
        from_name: str = "OrbitCRM",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider.lower()  # "resend" or "sendgrid"
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self.provider in ("resend", "sendgrid") and bool(self.api_key)

    async def send(self, to: str, content: EmailContent) -> bool:
        if self.provider == "resend" and self.api_key:
            return await self._send_resend(to, content)
        elif self.provider == "sendgrid" and self.api_key:
            return await self._send_sendgrid(to, content)
        logger.info("No email provider configured; would send %r to %s", content.subject, to)
        return False

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=30)

    async def _send_resend(self, to: str, content: EmailContent) -> bool:
        """Send via Resend API."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": f"{self.from_name} <{self.from_email}>",
                        "to": [to],
                        "subject": content.subject,
                        "html": content.html,
                        "text": content.text,
                    },
                )
            if resp.status_code in (200, 201):
                logger.info("Resend email sent to %s", to)
                return True
            logger.warning("Resend error: %s %s", resp.status_code, resp.text)
            return False
        except httpx.HTTPError:
            logger.exception("Resend send failed")
            return False

    async def _send_sendgrid(self, to: str, content: EmailContent) -> bool:
        """Send via SendGrid v3 API."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    SENDGRID_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "personalizations": [{"to": [{"email": to}]}],
                        "from": {"email": self.from_email, "name": self.from_name},
                        "subject": content.subject,
                        "content": [
                            {"type": "text/plain", "value": content.text},
                            {"type": "text/html", "value": content.html},
                        ],
                    },
                )
            if resp.status_code in (200, 202):
                logger.info("SendGrid email sent to %s", to)
                return True
            logger.warning("SendGrid error: %s %s", resp.status_code, resp.text)
            return False
        except httpx.HTTPError:
            logger.exception("SendGrid send failed")
            return False
