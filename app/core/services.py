"""
Service wiring.

Builds the booking core, its integrations and the conversation layer from
settings, once per process. Each integration adapter owns its own circuit
breaker; nothing here is shared between adapters.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings
from app.core.booking.availability import AvailabilityEngine, BusyIntervalSource
from app.core.booking.conflicts import ConflictResolver
from app.core.booking.frequency import FrequencyLimiter
from app.core.booking.lifecycle import BookingManager
from app.core.booking.outbox import SyncOutbox
from app.core.booking.store import BookingStore, InMemoryBookingStore, SqlBookingStore
from app.core.intelligence.parser import get_message_parser
from app.core.scheduling.engine import ConversationEngine
from app.core.scheduling.flow import ConversationFlow
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.voice import VoiceFunctions
from app.infra.calendar import CalendarClient
from app.infra.crm import CrmClient
from app.infra.database import get_session_factory
from app.infra.notifications import NotificationService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the API needs, built once."""

    store: BookingStore
    calendar: Optional[CalendarClient]
    crm: Optional[CrmClient]
    notifier: NotificationService
    outbox: SyncOutbox
    manager: BookingManager
    engine: ConversationEngine
    voice: VoiceFunctions

    async def close(self) -> None:
        """Finish pending sync work, then close clients."""
        await self.outbox.drain()
        if self.calendar is not None:
            await self.calendar.close()
        if self.crm is not None:
            await self.crm.close()
        await self.notifier.close()
        await self.store.close()


def build_services() -> Services:
    """Build the service graph from settings."""
    settings = get_settings()

    if settings.booking_store == "memory":
        logger.warning("Using in-memory booking store; bookings are lost on restart")
        store: BookingStore = InMemoryBookingStore()
    else:
        store = SqlBookingStore(get_session_factory())

    calendar = CalendarClient() if settings.calendar_enabled else None
    crm = CrmClient() if settings.crm_enabled else None
    notifier = NotificationService()
    logger.info(
        f"Integrations: calendar={'on' if calendar else 'off'}, "
        f"crm={'on' if crm else 'off'}, notifications={'on' if notifier.enabled else 'log only'}"
    )

    outbox = SyncOutbox(
        store,
        calendar=calendar,
        crm=crm,
        notifier=notifier,
        keep_succeeded=settings.sync_keep_succeeded_tasks,
    )
    busy_source = BusyIntervalSource(store, calendar)
    availability = AvailabilityEngine(busy_source, settings.business_hours)

    manager = BookingManager(
        store,
        availability,
        ConflictResolver(busy_source),
        FrequencyLimiter(store),
        outbox=outbox,
        alternative_count=settings.alternative_slot_count,
        alternative_search_days=settings.alternative_search_days,
    )

    responses = ResponseGenerator(settings.business_timezone)
    engine = ConversationEngine(
        manager,
        get_message_parser(),
        ConversationFlow(settings.business_timezone, settings.default_duration_minutes),
        responses,
        timezone=settings.business_timezone,
    )
    voice = VoiceFunctions(manager, responses, timezone=settings.business_timezone)

    return Services(
        store=store,
        calendar=calendar,
        crm=crm,
        notifier=notifier,
        outbox=outbox,
        manager=manager,
        engine=engine,
        voice=voice,
    )


# Singleton
_services: Optional[Services] = None


def get_services() -> Services:
    """Get singleton Services."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def get_booking_manager() -> BookingManager:
    return get_services().manager


def get_conversation_engine() -> ConversationEngine:
    return get_services().engine


def get_voice_functions() -> VoiceFunctions:
    return get_services().voice


async def shutdown_services() -> None:
    """Close the service graph if it was built."""
    global _services
    if _services is not None:
        await _services.close()
        _services = None
