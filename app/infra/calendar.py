"""
HTTP client for the external calendar.

The calendar service exposes a small REST API:
- POST /freebusy           busy intervals in a range
- POST /events             create an event, returns its id
- PATCH /events/{id}       move an event
- DELETE /events/{id}      remove an event

Every call goes through this client's DependencyGuard, so failures surface
as IntegrationError (or CircuitOpenError) and never as raw httpx errors.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from app.config import get_settings
from app.core.booking.types import Booking, Interval
from app.core.resilience import BreakerConfig, CircuitBreaker, DependencyGuard, RetryPolicy

logger = logging.getLogger(__name__)


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class CalendarClient:
    """
    Calendar adapter.

    The client owns its breaker: a calendar outage trips this breaker only,
    leaving CRM calls unaffected.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        guard: Optional[DependencyGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: Calendar API base URL (defaults to settings)
            token: Bearer token (defaults to settings)
            guard: Breaker/retry/timeout wrapper (defaults built from settings)
            transport: Custom httpx transport (tests)
        """
        settings = get_settings()
        self.base_url = base_url or settings.calendar_api_url
        self.token = token if token is not None else settings.calendar_api_token
        self.guard = guard or DependencyGuard(
            "calendar",
            breaker=CircuitBreaker(
                "calendar",
                BreakerConfig(
                    failure_threshold=settings.calendar_failure_threshold,
                    reset_timeout=settings.calendar_reset_timeout_seconds,
                    monitoring_period=settings.calendar_monitoring_period_seconds,
                ),
            ),
            retry=RetryPolicy(
                attempts=settings.calendar_retry_attempts,
                delay=settings.calendar_retry_delay_seconds,
            ),
            timeout=settings.calendar_timeout_seconds,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _event_payload(booking: Booking) -> dict:
        return {
            "summary": f"Meeting with {booking.name}",
            "description": booking.inquiry,
            "start": booking.start_time.isoformat(),
            "end": booking.end_time.isoformat(),
            "attendees": [booking.email],
            "booking_id": booking.id,
        }

    # === Availability ===

    async def get_busy_intervals(self, start: datetime, end: datetime) -> list[Interval]:
        """Busy intervals overlapping [start, end).

        Raises:
            IntegrationError: Calendar unreachable or breaker open
        """

        async def fetch() -> list[Interval]:
            client = await self._get_client()
            response = await client.post(
                "/freebusy",
                json={"time_min": start.isoformat(), "time_max": end.isoformat()},
            )
            response.raise_for_status()
            data = response.json()
            return [
                Interval(
                    start=_parse_time(item["start"]),
                    end=_parse_time(item["end"]),
                    event_id=item.get("event_id") or item.get("id"),
                )
                for item in data.get("busy", [])
            ]

        return await self.guard.call(fetch, "get_busy_intervals")

    # === Events ===

    async def create_event(self, booking: Booking) -> str:
        """Create an event for the booking. Returns the event id."""

        async def create() -> str:
            client = await self._get_client()
            response = await client.post("/events", json=self._event_payload(booking))
            response.raise_for_status()
            data = response.json()
            return str(data.get("id", data.get("event_id")))

        event_id = await self.guard.call(create, "create_event")
        logger.info(f"Calendar event {event_id} created for booking {booking.id}")
        return event_id

    async def update_event(self, event_id: str, booking: Booking) -> str:
        """Move an existing event to the booking's current time."""

        async def update() -> str:
            client = await self._get_client()
            response = await client.patch(
                f"/events/{event_id}", json=self._event_payload(booking)
            )
            response.raise_for_status()
            return event_id

        return await self.guard.call(update, "update_event")

    async def delete_event(self, event_id: str) -> None:
        """Delete an event. An already missing event counts as deleted."""

        async def delete() -> None:
            client = await self._get_client()
            response = await client.delete(f"/events/{event_id}")
            if response.status_code in (404, 410):
                logger.info(f"Calendar event {event_id} already gone")
                return
            response.raise_for_status()

        await self.guard.call(delete, "delete_event")

    def stats(self) -> dict:
        return self.guard.stats()
