"""
Sync Outbox

Every side effect that follows a durable booking write (calendar event,
CRM contact, notification) is recorded here as a SyncTask and run in the
background. The caller never waits for it, and a failure never touches
the booking itself beyond flagging it for manual sync.

Failed tasks stay inspectable until replayed; succeeded ones are kept only
for the most recent ``keep_succeeded`` tasks.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol
from uuid import uuid4

from app.core.booking.store import BookingStore
from app.core.booking.types import Booking, Interval


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarGateway(Protocol):
    async def get_busy_intervals(self, start: datetime, end: datetime) -> list[Interval]: ...
    async def create_event(self, booking: Booking) -> str: ...
    async def update_event(self, event_id: str, booking: Booking) -> str: ...
    async def delete_event(self, event_id: str) -> None: ...


class CrmGateway(Protocol):
    async def upsert_contact(self, email: str, attributes: dict[str, Any]) -> str: ...
    async def update_status(self, contact_ref: str, status: str) -> None: ...


class Notifier(Protocol):
    async def send_confirmation(self, booking: Booking) -> bool: ...
    async def send_update(self, booking: Booking, previous_start: Optional[str] = None) -> bool: ...
    async def send_cancellation(self, booking: Booking) -> bool: ...


class SyncKind(str, Enum):
    """What a sync task does."""

    CALENDAR_CREATE = "calendar_create"
    CALENDAR_UPDATE = "calendar_update"
    CALENDAR_DELETE = "calendar_delete"
    CRM_UPSERT = "crm_upsert"
    CRM_STATUS = "crm_status"
    NOTIFY_CONFIRMATION = "notify_confirmation"
    NOTIFY_UPDATE = "notify_update"
    NOTIFY_CANCELLATION = "notify_cancellation"

    @property
    def channel(self) -> str:
        return self.value.split("_", 1)[0]


class SyncStatus(str, Enum):
    """Sync task states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncTask:
    """One post-write side effect."""

    booking_id: str
    kind: SyncKind
    payload: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    status: SyncStatus = SyncStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class SyncOutbox:
    """
    Background runner for post-write sync.

    Tasks for the same booking and channel (calendar, crm, notify) run in
    order, so an event update never overtakes the create it depends on.
    Different bookings and channels run concurrently.

    Usage:
        outbox = SyncOutbox(store, calendar=calendar_client, crm=crm_client)
        outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        await outbox.drain()
    """

    def __init__(
        self,
        store: BookingStore,
        calendar: Optional[CalendarGateway] = None,
        crm: Optional[CrmGateway] = None,
        notifier: Optional[Notifier] = None,
        keep_succeeded: int = 1000,
    ):
        self.store = store
        self.calendar = calendar
        self.crm = crm
        self.notifier = notifier
        self.keep_succeeded = keep_succeeded

        self._tasks: dict[str, SyncTask] = {}
        self._succeeded: deque[str] = deque()
        self._running: set[asyncio.Task] = set()
        # (booking id, channel) -> lock and the number of tasks holding or waiting on it
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    def handles(self, kind: SyncKind) -> bool:
        """Whether a collaborator for this kind is configured."""
        return {
            "calendar": self.calendar,
            "crm": self.crm,
            "notify": self.notifier,
        }[kind.channel] is not None

    def enqueue(self, booking: Booking, kind: SyncKind, **payload) -> Optional[SyncTask]:
        """
        Record a task and start it in the background.

        Returns:
            The task, or None when the channel has no collaborator
        """
        if not self.handles(kind):
            return None
        task = SyncTask(booking_id=booking.id, kind=kind, payload=payload)
        self._tasks[task.id] = task
        self._start(task)
        return task

    def _start(self, task: SyncTask) -> None:
        runner = asyncio.create_task(self._run(task))
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)

    async def _run(self, task: SyncTask) -> None:
        key = (task.booking_id, task.kind.channel)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                await self._run_locked(task)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _run_locked(self, task: SyncTask) -> None:
        task.status = SyncStatus.RUNNING
        task.attempts += 1
        task.updated_at = _utcnow()
        try:
            booking = await self.store.get(task.booking_id)
            if booking is None:
                raise LookupError(f"Booking {task.booking_id} not found")
            await self._execute(task, booking)
        except Exception as e:
            task.status = SyncStatus.FAILED
            task.last_error = repr(e)
            task.updated_at = _utcnow()
            logger.error(
                f"Sync {task.kind.value} failed for booking {task.booking_id}: {e!r}"
            )
            await self._flag_manual(task)
            return

        task.status = SyncStatus.SUCCEEDED
        task.last_error = None
        task.updated_at = _utcnow()
        logger.debug(f"Sync {task.kind.value} done for booking {task.booking_id}")
        self._retire(task)

    def _retire(self, task: SyncTask) -> None:
        """Keep only the newest succeeded tasks."""
        self._succeeded.append(task.id)
        while len(self._succeeded) > self.keep_succeeded:
            self._tasks.pop(self._succeeded.popleft(), None)

    async def _execute(self, task: SyncTask, booking: Booking) -> None:
        kind = task.kind

        if kind in (SyncKind.CALENDAR_CREATE, SyncKind.CALENDAR_UPDATE):
            if booking.external_calendar_event_id:
                event_id = await self.calendar.update_event(
                    booking.external_calendar_event_id, booking
                )
            else:
                event_id = await self.calendar.create_event(booking)
            await self.store.update_sync_state(
                booking.id,
                external_calendar_event_id=event_id,
                calendar_synced=True,
                requires_manual_calendar_sync=False,
            )

        elif kind == SyncKind.CALENDAR_DELETE:
            if booking.external_calendar_event_id:
                await self.calendar.delete_event(booking.external_calendar_event_id)
            await self.store.update_sync_state(
                booking.id,
                calendar_synced=True,
                requires_manual_calendar_sync=False,
            )

        elif kind in (SyncKind.CRM_UPSERT, SyncKind.CRM_STATUS):
            contact_id = booking.external_crm_contact_id
            if kind == SyncKind.CRM_UPSERT or not contact_id:
                contact_id = await self.crm.upsert_contact(
                    booking.email, self._contact_attributes(booking)
                )
            if kind == SyncKind.CRM_STATUS:
                await self.crm.update_status(contact_id, booking.status.value)
            await self.store.update_sync_state(
                booking.id,
                external_crm_contact_id=contact_id,
                crm_synced=True,
                requires_manual_crm_sync=False,
            )

        elif kind == SyncKind.NOTIFY_CONFIRMATION:
            await self.notifier.send_confirmation(booking)
        elif kind == SyncKind.NOTIFY_UPDATE:
            await self.notifier.send_update(booking, task.payload.get("previous_start"))
        elif kind == SyncKind.NOTIFY_CANCELLATION:
            await self.notifier.send_cancellation(booking)

    @staticmethod
    def _contact_attributes(booking: Booking) -> dict[str, Any]:
        first, _, last = booking.name.partition(" ")
        return {
            "firstname": first,
            "lastname": last,
            "phone": booking.phone,
            "company": booking.company,
            "booking_status": booking.status.value,
            "next_meeting": booking.start_time.isoformat(),
        }

    async def _flag_manual(self, task: SyncTask) -> None:
        channel = task.kind.channel
        if channel == "calendar":
            fields = {"calendar_synced": False, "requires_manual_calendar_sync": True}
        elif channel == "crm":
            fields = {"crm_synced": False, "requires_manual_crm_sync": True}
        else:
            return
        try:
            await self.store.update_sync_state(task.booking_id, **fields)
        except Exception as e:
            logger.error(f"Could not flag booking {task.booking_id} for manual sync: {e!r}")

    # === Inspection and replay ===

    def tasks(self, booking_id: Optional[str] = None) -> list[SyncTask]:
        """All known tasks, oldest first."""
        tasks = sorted(self._tasks.values(), key=lambda t: t.created_at)
        if booking_id is not None:
            tasks = [t for t in tasks if t.booking_id == booking_id]
        return tasks

    def failed(self) -> list[SyncTask]:
        return [t for t in self.tasks() if t.status == SyncStatus.FAILED]

    def replay(self, task_id: str) -> SyncTask:
        """
        Run a failed task again.

        Raises:
            KeyError: Unknown task
            ValueError: Task is not in FAILED state
        """
        task = self._tasks[task_id]
        if task.status != SyncStatus.FAILED:
            raise ValueError(f"Task {task_id} is {task.status.value}, not failed")
        task.status = SyncStatus.PENDING
        task.updated_at = _utcnow()
        logger.info(f"Replaying sync {task.kind.value} for booking {task.booking_id}")
        self._start(task)
        return task

    def replay_failed(self) -> list[SyncTask]:
        return [self.replay(task.id) for task in self.failed()]

    async def drain(self) -> None:
        """Wait until every running task has finished."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def stats(self) -> dict:
        counts = {status.value: 0 for status in SyncStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        return counts
