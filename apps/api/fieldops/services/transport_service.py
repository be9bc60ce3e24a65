"""Transport service - hands an outbound message to its channel provider.

SMS goes through Twilio's REST API, e-mail through the Resend API, DMs through the
page-messaging relay webhook. A provider without credentials fails with a
non-retryable ``*_not_configured`` error; ``TRANSPORT_DRY_RUN`` logs the send
instead of calling anything.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx

from fieldops.core.config import settings
from fieldops.db.enums import Channel
from fieldops.utils.masking import mask_address

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class OutboundMessage:
    message_id: UUID
    channel: str
    to_address: str
    body: str
    subject: str | None = None
    dm_page_id: str | None = None


@dataclass(frozen=True)
class SendResult:
    provider: str
    provider_message_id: str | None = None


class TransportError(Exception):
    """Provider rejected or could not take the message."""

    def __init__(self, code: str, retryable: bool, detail: str | None = None):
        super().__init__(code if detail is None else f"{code}: {detail}")
        self.code = code
        self.retryable = retryable
        self.detail = detail


class Transport(ABC):
    """Abstract base class for message transports."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> SendResult:
        """Deliver one message. Raises TransportError."""
        pass


def _status_error(provider: str, response: httpx.Response) -> TransportError:
    return TransportError(
        f"{provider}_request_failed",
        retryable=response.status_code in RETRYABLE_STATUSES,
        detail=f"status {response.status_code}",
    )


class ProviderTransport(Transport):
    """Routes each channel to its configured provider."""

    def __init__(self, http_transport: httpx.AsyncBaseTransport | None = None):
        self._http_transport = http_transport

    async def send(self, message: OutboundMessage) -> SendResult:
        if message.channel == Channel.SMS.value:
            return await self.send_sms(message)
        if message.channel == Channel.EMAIL.value:
            return await self.send_email(message)
        if message.channel == Channel.DM.value:
            return await self.send_dm(message)
        raise TransportError("unsupported_channel", retryable=False, detail=message.channel)

    async def _post(self, provider: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=settings.TRANSPORT_TIMEOUT_SECONDS, transport=self._http_transport
            ) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{provider}_timeout", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                f"{provider}_request_failed", retryable=True, detail=type(exc).__name__
            ) from exc
        if response.status_code >= 400:
            raise _status_error(provider, response)
        return response

    async def send_sms(self, message: OutboundMessage) -> SendResult:
        sid = settings.TWILIO_ACCOUNT_SID
        if not (sid and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
            raise TransportError("sms_not_configured", retryable=False)

        url = f"{settings.TWILIO_API_BASE_URL.rstrip('/')}/2010-04-01/Accounts/{sid}/Messages.json"
        response = await self._post(
            "twilio",
            url,
            auth=(sid, settings.TWILIO_AUTH_TOKEN),
            data={
                "To": message.to_address,
                "From": settings.TWILIO_FROM_NUMBER,
                "Body": message.body,
            },
        )
        data = response.json()
        logger.info(
            "SMS sent message=%s to=%s sid=%s",
            message.message_id,
            mask_address(message.channel, message.to_address),
            data.get("sid"),
        )
        return SendResult(provider="twilio", provider_message_id=data.get("sid"))

    async def send_email(self, message: OutboundMessage) -> SendResult:
        if not settings.RESEND_API_KEY:
            raise TransportError("email_not_configured", retryable=False)

        # Message id is stable across job retries
        headers = {
            "Authorization": f"Bearer {settings.RESEND_API_KEY}",
            "Content-Type": "application/json",
            "Idempotency-Key": f"message/{message.message_id}",
        }
        response = await self._post(
            "resend",
            RESEND_SEND_URL,
            headers=headers,
            json={
                "from": settings.EMAIL_FROM,
                "to": [message.to_address],
                "subject": message.subject or "",
                "text": message.body,
            },
        )
        provider_id = response.json().get("id")
        logger.info(
            "Email sent message=%s to=%s id=%s",
            message.message_id,
            mask_address(message.channel, message.to_address),
            provider_id,
        )
        return SendResult(provider="resend", provider_message_id=provider_id)

    async def send_dm(self, message: OutboundMessage) -> SendResult:
        if not settings.DM_WEBHOOK_URL:
            raise TransportError("dm_not_configured", retryable=False)

        headers = {"Content-Type": "application/json"}
        if settings.DM_WEBHOOK_TOKEN:
            headers["Authorization"] = f"Bearer {settings.DM_WEBHOOK_TOKEN}"
        response = await self._post(
            "dm",
            settings.DM_WEBHOOK_URL,
            headers=headers,
            json={
                "message_id": str(message.message_id),
                "recipient_id": message.to_address,
                "page_id": message.dm_page_id,
                "text": message.body,
            },
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        provider_id = data.get("id") if isinstance(data, dict) else None
        logger.info("DM sent message=%s id=%s", message.message_id, provider_id)
        return SendResult(provider="dm_webhook", provider_message_id=provider_id)


class DryRunTransport(Transport):
    """Logs instead of sending."""

    async def send(self, message: OutboundMessage) -> SendResult:
        logger.info(
            "[DRY RUN] %s send skipped for message=%s to=%s",
            message.channel,
            message.message_id,
            mask_address(message.channel, message.to_address),
        )
        return SendResult(provider="dry_run")


def get_transport() -> Transport:
    if settings.TRANSPORT_DRY_RUN:
        return DryRunTransport()
    return ProviderTransport()
