"""
Notification Service

Sends confirmation, update and cancellation notices to a webhook. Template
rendering and delivery (email, SMS) happen behind the webhook.

When no webhook is configured notices are only logged.
"""

import logging
from typing import Optional

import httpx

from app.config import get_settings
from app.core.booking.types import Booking
from app.core.errors import IntegrationError

logger = logging.getLogger(__name__)


class NotificationService:
    """Fire-and-forget booking notices."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize notification service.

        Args:
            webhook_url: Endpoint receiving notices (defaults to settings)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.webhook_url = webhook_url or get_settings().notification_webhook_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send(self, event: str, booking: Booking, **extra) -> bool:
        if not self.enabled:
            logger.info(f"Notification '{event}' for booking {booking.id} (no webhook configured)")
            return False

        payload = {"event": event, "booking": booking.to_dict(), **extra}
        client = await self._get_client()
        try:
            response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise IntegrationError("notifications", f"{event} failed: {e!r}") from e

        logger.info(f"Notification '{event}' sent for booking {booking.id}")
        return True

    async def send_confirmation(self, booking: Booking) -> bool:
        """Send booking confirmation.

        Returns:
            True if delivered to the webhook, False if only logged
        """
        return await self._send("booking.confirmed", booking)

    async def send_update(self, booking: Booking, previous_start: Optional[str] = None) -> bool:
        """Send reschedule notice."""
        return await self._send("booking.rescheduled", booking, previous_start=previous_start)

    async def send_cancellation(self, booking: Booking) -> bool:
        """Send cancellation notice."""
        return await self._send("booking.cancelled", booking)
