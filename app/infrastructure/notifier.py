"""Outbound notification and analytics clients.

These clients are only called by the outbox relay, never from a request
handler's critical path. They raise ``DeliveryError`` on transport or
upstream failure so the relay can record the attempt.
"""

from html import escape
from typing import Any

import httpx
import structlog

from app.infrastructure.config import settings

logger = structlog.get_logger()


class DeliveryError(Exception):
    """Raised when an external delivery fails."""

    def __init__(self, target: str, message: str) -> None:
        """Initialize delivery error.

        Args:
            target: Which external system failed.
            message: Error description.
        """
        super().__init__(f"{target}: {message}")
        self.target = target
        self.message = message


# ============================================================================
# Notification Dispatcher
# ============================================================================


class NotificationDispatcher:
    """Sends order and account notifications.

    Staff notifications go to a Telegram chat through the Bot API;
    verification and password reset codes go to the mailer service.
    Unconfigured targets are skipped with a warning.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        mailer_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize dispatcher.

        Args:
            bot_token: Telegram bot token.
            chat_id: Telegram chat receiving staff notifications.
            mailer_url: Endpoint accepting code emails.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.bot_token = settings.telegram_bot_token if bot_token is None else bot_token
        self.chat_id = settings.telegram_chat_id if chat_id is None else chat_id
        self.mailer_url = settings.mailer_url if mailer_url is None else mailer_url
        self.timeout = timeout or settings.external_call_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _send_telegram(self, text: str) -> bool:
        if not self.bot_token or not self.chat_id:
            logger.warning("Telegram not configured, notification skipped")
            return False

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
                )
        except httpx.RequestError as e:
            raise DeliveryError("telegram", str(e)) from e

        if response.status_code >= 400:
            raise DeliveryError("telegram", f"HTTP {response.status_code}")
        return True

    async def order_confirmed(self, payload: dict[str, Any]) -> bool:
        """Notify staff that an order was paid.

        Args:
            payload: ``order.confirmed`` event payload.

        Returns:
            True if a message was sent, False if skipped.
        """
        lines = [
            "<b>New order</b>",
            f"<b>Number:</b> {escape(str(payload.get('public_number') or payload.get('order_id')))}",
            f"<b>Total:</b> {payload.get('total', 0)}",
        ]
        for label, key in (("Name", "full_name"), ("Phone", "phone"), ("Email", "email")):
            if payload.get(key):
                lines.append(f"<b>{label}:</b> {escape(str(payload[key]))}")
        return await self._send_telegram("\n".join(lines))

    async def delivery_requested(self, payload: dict[str, Any]) -> bool:
        """Notify staff that a customer scheduled a delivery."""
        lines = [
            "<b>Delivery requested</b>",
            f"<b>Order:</b> {escape(str(payload.get('public_number') or payload.get('order_id')))}",
            f"<b>When:</b> {escape(str(payload.get('scheduled_at', '')))}",
            f"<b>Address:</b> {escape(str(payload.get('address', '')))}",
            f"<b>Recipient:</b> {escape(str(payload.get('recipient_name', '')))}",
            f"<b>Phone:</b> {escape(str(payload.get('phone', '')))}",
        ]
        return await self._send_telegram("\n".join(lines))

    async def verification_code(self, payload: dict[str, Any]) -> bool:
        """Send an email verification code through the mailer."""
        return await self._send_code_mail("verification_code", payload)

    async def password_reset_code(self, payload: dict[str, Any]) -> bool:
        """Send a password reset code through the mailer."""
        return await self._send_code_mail("password_reset_code", payload)

    async def _send_code_mail(self, template: str, payload: dict[str, Any]) -> bool:
        if not self.mailer_url:
            logger.warning("Mailer not configured, code not sent", template=template)
            return False

        try:
            async with self._client() as client:
                response = await client.post(
                    self.mailer_url,
                    json={
                        "to": payload.get("email"),
                        "template": template,
                        "variables": {"code": payload.get("code")},
                    },
                )
        except httpx.RequestError as e:
            raise DeliveryError("mailer", str(e)) from e

        if response.status_code >= 400:
            raise DeliveryError("mailer", f"HTTP {response.status_code}")
        return True


# ============================================================================
# Analytics Client
# ============================================================================


class AnalyticsClient:
    """Forwards tracking events to the analytics service."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = settings.events_service_url if base_url is None else base_url
        self.api_key = settings.events_service_api_key if api_key is None else api_key
        self.timeout = timeout or settings.external_call_timeout_seconds
        self.transport = transport

    async def track(self, events: list[dict[str, Any]]) -> bool:
        """Send a batch of tracking events.

        Args:
            events: Events in the analytics service schema.

        Returns:
            True if sent, False if analytics is not configured.

        Raises:
            DeliveryError: On transport or upstream failure.
        """
        if not self.base_url or not self.api_key:
            return False

        url = f"{self.base_url.rstrip('/')}/api/v1/events/batch"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    url,
                    json={"events": events},
                    headers={"X-Events-Api-Key": self.api_key},
                )
        except httpx.RequestError as e:
            raise DeliveryError("analytics", str(e)) from e

        if response.status_code >= 400:
            raise DeliveryError("analytics", f"HTTP {response.status_code}")
        return True
