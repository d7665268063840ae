"""Tests for best-effort post-write sync."""

from unittest.mock import AsyncMock

import pytest

from app.core.booking.outbox import SyncKind, SyncOutbox, SyncStatus
from app.core.booking.store import InMemoryBookingStore
from app.core.errors import IntegrationError
from tests.factories import FakeCalendar, at, make_booking


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def crm():
    client = AsyncMock()
    client.upsert_contact.return_value = "contact-42"
    return client


@pytest.fixture
def notifier():
    return AsyncMock()


class TestSyncOutbox:
    """Test outbox task execution and flags."""

    @pytest.mark.asyncio
    async def test_channel_without_collaborator_is_skipped(self, store):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store)

        assert outbox.enqueue(booking, SyncKind.CALENDAR_CREATE) is None
        assert outbox.tasks() == []

    @pytest.mark.asyncio
    async def test_calendar_create(self, store):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, calendar=FakeCalendar())

        task = outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        await outbox.drain()

        assert task.status == SyncStatus.SUCCEEDED
        assert task.attempts == 1
        stored = await store.get(booking.id)
        assert stored.external_calendar_event_id == "evt-1"
        assert stored.calendar_synced is True

    @pytest.mark.asyncio
    async def test_calendar_failure_flags_booking(self, store):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, calendar=FakeCalendar(fail=True))

        task = outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        await outbox.drain()

        assert task.status == SyncStatus.FAILED
        assert "unreachable" in task.last_error
        stored = await store.get(booking.id)
        assert stored.calendar_synced is False
        assert stored.requires_manual_calendar_sync is True
        assert outbox.failed() == [task]
        assert outbox.stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_replay_clears_flag(self, store):
        booking = await store.insert(make_booking(at(14)))
        calendar = FakeCalendar(fail=True)
        outbox = SyncOutbox(store, calendar=calendar)
        task = outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        await outbox.drain()

        calendar.fail = False
        replayed = outbox.replay_failed()
        await outbox.drain()

        assert replayed == [task]
        assert task.status == SyncStatus.SUCCEEDED
        assert task.attempts == 2
        stored = await store.get(booking.id)
        assert stored.requires_manual_calendar_sync is False
        assert stored.calendar_synced is True

    @pytest.mark.asyncio
    async def test_replay_requires_failed_task(self, store):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, calendar=FakeCalendar())
        task = outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        await outbox.drain()

        with pytest.raises(ValueError):
            outbox.replay(task.id)
        with pytest.raises(KeyError):
            outbox.replay("unknown")

    @pytest.mark.asyncio
    async def test_same_channel_runs_in_order(self, store):
        booking = await store.insert(make_booking(at(14)))
        calendar = FakeCalendar()
        outbox = SyncOutbox(store, calendar=calendar)

        outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        outbox.enqueue(booking, SyncKind.CALENDAR_UPDATE)
        await outbox.drain()

        # The update sees the event id written by the create
        assert calendar.calls == [("create", booking.id), ("update", "evt-1")]

    @pytest.mark.asyncio
    async def test_calendar_delete(self, store):
        booking = await store.insert(make_booking(at(14), external_calendar_event_id="evt-7"))
        calendar = FakeCalendar()
        outbox = SyncOutbox(store, calendar=calendar)

        outbox.enqueue(booking, SyncKind.CALENDAR_DELETE)
        await outbox.drain()

        assert calendar.calls == [("delete", "evt-7")]

    @pytest.mark.asyncio
    async def test_crm_upsert(self, store, crm):
        booking = await store.insert(make_booking(at(14), name="Jane Doe", company="Acme"))
        outbox = SyncOutbox(store, crm=crm)

        outbox.enqueue(booking, SyncKind.CRM_UPSERT)
        await outbox.drain()

        email, attributes = crm.upsert_contact.await_args.args
        assert email == booking.email
        assert attributes["firstname"] == "Jane"
        assert attributes["lastname"] == "Doe"
        assert attributes["company"] == "Acme"
        stored = await store.get(booking.id)
        assert stored.external_crm_contact_id == "contact-42"
        assert stored.crm_synced is True

    @pytest.mark.asyncio
    async def test_crm_status_upserts_missing_contact(self, store, crm):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, crm=crm)

        outbox.enqueue(booking, SyncKind.CRM_STATUS)
        await outbox.drain()

        crm.upsert_contact.assert_awaited_once()
        crm.update_status.assert_awaited_once_with("contact-42", "confirmed")

    @pytest.mark.asyncio
    async def test_crm_failure_flags_only_crm(self, store, crm):
        crm.upsert_contact.side_effect = IntegrationError("crm", "down")
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, crm=crm)

        outbox.enqueue(booking, SyncKind.CRM_UPSERT)
        await outbox.drain()

        stored = await store.get(booking.id)
        assert stored.requires_manual_crm_sync is True
        assert stored.requires_manual_calendar_sync is False

    @pytest.mark.asyncio
    async def test_notification_failure_sets_no_flag(self, store, notifier):
        notifier.send_confirmation.side_effect = IntegrationError("notifications", "down")
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, notifier=notifier)

        task = outbox.enqueue(booking, SyncKind.NOTIFY_CONFIRMATION)
        await outbox.drain()

        assert task.status == SyncStatus.FAILED
        stored = await store.get(booking.id)
        assert stored.requires_manual_calendar_sync is False
        assert stored.requires_manual_crm_sync is False

    @pytest.mark.asyncio
    async def test_update_notice_carries_previous_start(self, store, notifier):
        booking = await store.insert(make_booking(at(14)))
        outbox = SyncOutbox(store, notifier=notifier)

        outbox.enqueue(booking, SyncKind.NOTIFY_UPDATE, previous_start="2024-12-09T13:00:00+00:00")
        await outbox.drain()

        sent, previous = notifier.send_update.await_args.args
        assert sent.id == booking.id
        assert previous == "2024-12-09T13:00:00+00:00"

    @pytest.mark.asyncio
    async def test_tasks_by_booking(self, store, notifier):
        first = await store.insert(make_booking(at(14)))
        second = await store.insert(make_booking(at(15)))
        outbox = SyncOutbox(store, notifier=notifier)

        outbox.enqueue(first, SyncKind.NOTIFY_CONFIRMATION)
        outbox.enqueue(second, SyncKind.NOTIFY_CONFIRMATION)
        await outbox.drain()

        assert [t.booking_id for t in outbox.tasks(first.id)] == [first.id]
        assert outbox.stats()["succeeded"] == 2

    @pytest.mark.asyncio
    async def test_channel_locks_released_after_drain(self, store, notifier):
        booking = await store.insert(make_booking(at(14)))
        calendar = FakeCalendar()
        outbox = SyncOutbox(store, calendar=calendar, notifier=notifier)

        outbox.enqueue(booking, SyncKind.CALENDAR_CREATE)
        outbox.enqueue(booking, SyncKind.CALENDAR_UPDATE)
        outbox.enqueue(booking, SyncKind.NOTIFY_CONFIRMATION)
        assert outbox._locks == {}  # nothing has started yet
        await outbox.drain()

        assert calendar.calls == [("create", booking.id), ("update", "evt-1")]
        assert outbox._locks == {}
        assert outbox._lock_users == {}

    @pytest.mark.asyncio
    async def test_succeeded_tasks_are_bounded(self, store, notifier):
        bookings = [await store.insert(make_booking(at(hour))) for hour in (10, 11, 12)]
        notifier.send_confirmation.side_effect = [True, IntegrationError("notify", "down"), True]
        outbox = SyncOutbox(store, notifier=notifier, keep_succeeded=1)

        for booking in bookings:
            outbox.enqueue(booking, SyncKind.NOTIFY_CONFIRMATION)
            await outbox.drain()

        kept = outbox.tasks()
        assert [(t.booking_id, t.status) for t in kept] == [
            (bookings[1].id, SyncStatus.FAILED),
            (bookings[2].id, SyncStatus.SUCCEEDED),
        ]
        assert outbox.stats()["succeeded"] == 1
        assert len(outbox.failed()) == 1
