"""
Conversation Engine - Main Orchestrator.

Coordinates parsing, the dialog flow, the booking manager and the session
store to answer one message at a time.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from app.core.booking.lifecycle import BookingManager
from app.core.booking.types import Booking, BookingRequest
from app.core.errors import (
    ConflictError,
    FrequencyLimitExceeded,
    NotFoundError,
    SessionBusyError,
    StoreError,
    ValidationError,
)
from app.core.intelligence.intent.types import Intent
from app.core.intelligence.parser import MessageParser, ParseContext
from app.core.intelligence.session.models import SessionData
from app.core.intelligence.session.state import (
    ConversationState,
    can_transition,
    is_terminal_state,
)
from app.core.intelligence.session.store import SessionStore, get_session_store
from app.core.scheduling.flow import ConversationFlow, FlowAction
from app.core.scheduling.response import ResponseGenerator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# Validation message keyword -> fields to ask for again
VALIDATION_FIELDS = (
    ("name", ("name",)),
    ("email", ("email",)),
    ("phone", ("phone",)),
    ("duration", ("duration",)),
    ("past", ("date", "time")),
    ("timezone", ("time",)),
)


@dataclass
class EngineResponse:
    """Response from conversation engine."""

    message: str
    session_id: str
    state: ConversationState
    intent: Optional[Intent] = None
    confidence: Optional[float] = None
    booking_id: Optional[str] = None
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "message": self.message,
            "session_id": self.session_id,
            "state": self.state.value,
            "intent": self.intent.value if self.intent else None,
        }
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.booking_id:
            result["booking_id"] = self.booking_id
        if self.processing_time_ms is not None:
            result["processing_time_ms"] = self.processing_time_ms
        return result


class ConversationEngine:
    """
    Main orchestrator for the booking assistant.

    Each message is handled under the session's lock, so two messages for
    the same session never interleave. A message that cannot get the lock
    in time gets a "still working" reply and changes nothing.
    """

    def __init__(
        self,
        manager: BookingManager,
        parser: MessageParser,
        flow: ConversationFlow,
        responses: ResponseGenerator,
        session_store: Optional[SessionStore] = None,
        timezone: str = "Europe/London",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.manager = manager
        self.parser = parser
        self.flow = flow
        self.responses = responses
        self._session_store = session_store
        self.tz = ZoneInfo(timezone)
        self.clock = clock

    async def _get_store(self) -> SessionStore:
        if self._session_store is None:
            self._session_store = await get_session_store()
        return self._session_store

    async def handle_message(self, session_id: str, text: str) -> str:
        """Answer one message with plain text."""
        response = await self.process(text, session_id)
        return response.message

    async def process(self, message: str, session_id: Optional[str] = None) -> EngineResponse:
        """Process a user message.

        Args:
            message: User's message
            session_id: Existing session ID (a new one is created if omitted)

        Returns:
            EngineResponse with reply and state
        """
        session_id = session_id or str(uuid4())
        store = await self._get_store()

        try:
            async with store.lock(session_id):
                return await self._process_locked(store, message, session_id)
        except SessionBusyError:
            session = await store.get(session_id)
            return EngineResponse(
                message=self.responses.busy(),
                session_id=session_id,
                state=session.state if session else ConversationState.IDLE,
                intent=session.pinned_intent if session else None,
            )
        except Exception as e:
            logger.error(f"Error processing message for session {session_id}: {e}", exc_info=True)
            # Whatever the turn left behind is not trusted
            await store.delete(session_id)
            return EngineResponse(
                message=self.responses.unexpected_error(),
                session_id=session_id,
                state=ConversationState.IDLE,
            )

    async def close_session(self, session_id: str) -> bool:
        """Forget a session when its channel closes."""
        store = await self._get_store()
        deleted = await store.delete(session_id)
        if deleted:
            logger.info(f"Session {session_id} closed")
        return deleted

    async def _process_locked(
        self,
        store: SessionStore,
        message: str,
        session_id: str,
    ) -> EngineResponse:
        start_time = _utcnow()

        session = await store.get(session_id) or SessionData(session_id=session_id)
        session.message_count += 1

        context = ParseContext(
            today=self.clock().astimezone(self.tz).date(),
            timezone=self.tz.key,
            expected_field=session.expected_field,
            pinned_intent=session.pinned_intent,
        )
        parsed = await self.parser.parse(message, context)

        action = self.flow.process(session, parsed)
        reply = await self._execute_action(session, action)

        session.updated_at = _utcnow()
        if is_terminal_state(session.state):
            await store.delete(session_id)
            logger.info(f"Session {session_id} finished: {session.state.value}")
        else:
            await store.set(session)

        processing_time_ms = (_utcnow() - start_time).total_seconds() * 1000
        return EngineResponse(
            message=reply,
            session_id=session_id,
            state=session.state,
            intent=session.pinned_intent or parsed.intent,
            confidence=parsed.confidence,
            booking_id=session.booking_id,
            processing_time_ms=processing_time_ms,
        )

    # === Actions ===

    async def _execute_action(self, session: SessionData, action: FlowAction) -> str:
        """Carry out an action, rendering booking errors as scripted replies."""
        try:
            return await self._dispatch(session, action)

        except ConflictError as e:
            alternatives = e.alternatives
            session.offered = [
                {"kind": "slot", "start": slot.start_time.isoformat(), "duration": slot.duration_minutes}
                for slot in alternatives
            ]
            session.collected.pop("time", None)
            if not alternatives:
                session.collected.pop("date", None)
            self._transition(session, ConversationState.COLLECTING)
            session.expected_field = "choice" if alternatives else "date"
            return self.responses.conflict(alternatives)

        except FrequencyLimitExceeded as e:
            self._transition(session, ConversationState.ABORTED)
            return self.responses.frequency_limit(e)

        except ValidationError as e:
            fields = self._fields_for(e.errors)
            if not fields:
                self._transition(session, ConversationState.ABORTED)
                return self.responses.validation(e.errors, self.responses.general_help())
            for field in fields:
                session.collected.pop(field, None)
            # The follow-up can hit the store too, so it gets the same handling
            follow_up = await self._execute_action(session, self.flow.next_step(session))
            return self.responses.validation(e.errors, follow_up)

        except NotFoundError:
            self._transition(session, ConversationState.ABORTED)
            return self.responses.not_found()

        except StoreError as e:
            logger.error(f"Store failure in session {session.session_id}: {e}")
            self._transition(session, ConversationState.ABORTED)
            return self.responses.store_error()

    async def _dispatch(self, session: SessionData, action: FlowAction) -> str:
        intent = session.pinned_intent
        action_type = action.action_type

        if action_type == "respond":
            session.expected_field = None
            return self.responses.general_help()

        if action_type == "abort":
            self._transition(session, ConversationState.ABORTED)
            return self.responses.aborted(intent)

        if action_type == "collect":
            self._transition(session, action.next_state)
            session.expected_field = action.prompt_for
            return self.responses.prompt(action.prompt_for, session.collected, intent)

        if action_type == "reprompt":
            self._transition(session, action.next_state)
            session.expected_field = action.prompt_for
            return self.responses.reprompt(action.prompt_for, session.collected, session.offered)

        if action_type == "lookup":
            return await self._lookup(session)

        if action_type == "confirm":
            booking = None
            if intent != Intent.BOOK:
                booking = await self.manager.get(session.booking_id, session.collected.get("email"))
            self._transition(session, ConversationState.CONFIRMING)
            session.expected_field = "confirmation"
            return self.responses.confirm(intent, session.collected, booking)

        if action_type == "execute":
            return await self._execute(session)

        raise ValueError(f"Unknown flow action: {action_type}")

    async def _lookup(self, session: SessionData) -> str:
        """Identify the booking a reschedule or cancel applies to."""
        email = session.collected["email"]
        bookings = await self.manager.find_upcoming(email)

        if not bookings:
            session.collected.pop("email", None)
            self._transition(session, ConversationState.COLLECTING)
            session.expected_field = "email"
            return self.responses.no_bookings(email)

        if len(bookings) == 1:
            self.flow.select_booking(session, bookings[0].id, bookings[0].duration_minutes)
            return await self._dispatch(session, self.flow.next_step(session))

        session.offered = [
            {
                "kind": "booking",
                "id": booking.id,
                "start": booking.start_time.isoformat(),
                "duration": booking.duration_minutes,
            }
            for booking in bookings
        ]
        self._transition(session, ConversationState.COLLECTING)
        session.expected_field = "choice"
        return self.responses.choose_booking(bookings)

    async def _execute(self, session: SessionData) -> str:
        """Run the confirmed operation against the booking manager."""
        intent = session.pinned_intent
        collected = session.collected
        booking: Booking

        if intent == Intent.BOOK:
            booking = await self.manager.create(BookingRequest(
                name=collected["name"],
                email=collected["email"],
                start_time=self._start(collected),
                duration_minutes=collected["duration"],
                phone=collected.get("phone"),
                company=collected.get("company"),
            ))
            reply = self.responses.booked(booking)
        elif intent == Intent.RESCHEDULE:
            booking = await self.manager.reschedule(
                session.booking_id,
                self._start(collected),
                collected.get("duration"),
                email=collected["email"],
            )
            reply = self.responses.rescheduled(booking)
        else:
            booking = await self.manager.cancel(session.booking_id, email=collected["email"])
            reply = self.responses.cancelled(booking)

        session.booking_id = booking.id
        self._transition(session, ConversationState.COMPLETE)
        return reply

    # === Helpers ===

    def _start(self, collected: dict) -> datetime:
        """Local date and time from the session as an aware datetime."""
        return datetime.combine(
            date.fromisoformat(collected["date"]),
            time.fromisoformat(collected["time"]),
            tzinfo=self.tz,
        )

    def _fields_for(self, errors: list[str]) -> list[str]:
        fields: list[str] = []
        for error in errors:
            lowered = error.lower()
            for keyword, names in VALIDATION_FIELDS:
                if keyword in lowered:
                    fields.extend(n for n in names if n not in fields)
                    break
        return fields

    def _transition(self, session: SessionData, new_state: ConversationState) -> None:
        if not can_transition(session.state, new_state):
            logger.warning(
                f"Unexpected transition {session.state.value} -> {new_state.value} "
                f"in session {session.session_id}"
            )
        session.state = new_state
