"""
Conversation Flow Manager.

Decides the next step of a booking conversation from the session and the
parsed message. The flow never calls the booking core itself: it returns a
FlowAction and the engine carries it out.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from app.core.booking.types import ALLOWED_DURATIONS
from app.core.intelligence.intent.types import ConfirmationType, Intent
from app.core.intelligence.parser import ParseResult
from app.core.intelligence.session.models import SessionData
from app.core.intelligence.session.state import ConversationState

logger = logging.getLogger(__name__)


@dataclass
class FlowAction:
    """Action determined by flow manager."""

    next_state: ConversationState
    action_type: str  # respond, collect, reprompt, lookup, confirm, execute, abort
    prompt_for: Optional[str] = None  # Field to ask for next


class ConversationFlow:
    """
    State machine manager for booking conversations.

    The first booking-related intent pins the session. Later messages are
    never re-classified; they only fill fields.

    Required fields per intent, in the order they are asked for. "booking"
    stands for the identification step (lookup by email, then
    disambiguation when there is more than one upcoming booking).
    """

    REQUIRED_FIELDS = {
        Intent.BOOK: ["name", "email", "date", "time"],
        Intent.RESCHEDULE: ["email", "booking", "date", "time"],
        Intent.CANCEL: ["email", "booking"],
    }

    def __init__(self, timezone: str = "Europe/London", default_duration: int = 30):
        self.tz = ZoneInfo(timezone)
        self.default_duration = default_duration

    def process(self, session: SessionData, parsed: ParseResult) -> FlowAction:
        """Process user input and determine next action.

        Args:
            session: Current session data (updated in place)
            parsed: Parsed message

        Returns:
            FlowAction with next state and action
        """
        slots = parsed.slots

        if session.pinned_intent is None:
            if slots.abort or not parsed.intent.is_booking_related:
                return FlowAction(next_state=ConversationState.IDLE, action_type="respond")
            session.pin(parsed.intent)
            logger.debug(f"Session {session.session_id} pinned to {parsed.intent.value}")
        elif slots.abort:
            return FlowAction(next_state=ConversationState.ABORTED, action_type="abort")

        changed = self._merge_slots(session, parsed)
        invalid = self._invalid_field(slots)

        if session.expected_field == "choice" and session.offered:
            if slots.choice is not None:
                if not self.apply_choice(session, slots.choice):
                    return FlowAction(session.state, "reprompt", prompt_for="choice")
            elif not changed and not invalid:
                return FlowAction(session.state, "reprompt", prompt_for="choice")
            else:
                session.offered = []

        if invalid:
            return FlowAction(ConversationState.COLLECTING, "reprompt", prompt_for=invalid)

        if session.state == ConversationState.CONFIRMING and not changed:
            if slots.confirmation == ConfirmationType.YES:
                return FlowAction(next_state=ConversationState.COMPLETE, action_type="execute")
            if slots.confirmation == ConfirmationType.NO:
                return FlowAction(next_state=ConversationState.ABORTED, action_type="abort")
            return FlowAction(ConversationState.CONFIRMING, "reprompt", prompt_for="confirmation")

        return self.next_step(session)

    def next_step(self, session: SessionData) -> FlowAction:
        """Ask for the first missing field, or confirm when nothing is missing."""
        intent = session.pinned_intent
        collected = session.collected

        for field in self.REQUIRED_FIELDS[intent]:
            if field == "booking":
                if session.booking_id is None:
                    return FlowAction(ConversationState.COLLECTING, "lookup")
            elif not collected.get(field):
                return FlowAction(ConversationState.COLLECTING, "collect", prompt_for=field)

        if intent == Intent.BOOK:
            collected.setdefault("duration", self.default_duration)
        return FlowAction(next_state=ConversationState.CONFIRMING, action_type="confirm")

    # === Field handling ===

    def _merge_slots(self, session: SessionData, parsed: ParseResult) -> set[str]:
        """Merge usable slot values into the session. Returns changed keys."""
        slots = parsed.slots
        intent = session.pinned_intent
        values: dict = {
            "date": slots.date.isoformat() if slots.date else None,
            "time": slots.time.strftime("%H:%M") if slots.time else None,
        }
        if slots.email and slots.email_valid:
            values["email"] = slots.email
        if slots.duration in ALLOWED_DURATIONS:
            values["duration"] = slots.duration
        if intent == Intent.BOOK:
            values.update(name=slots.name, phone=slots.phone, company=slots.company)
        if intent == Intent.CANCEL:
            # Nothing to schedule when cancelling
            values.update(date=None, time=None, duration=None)

        changed = {
            key for key, value in values.items()
            if value is not None and session.collected.get(key) != value
        }

        if "email" in changed and intent != Intent.BOOK and session.booking_id:
            # A different requester: identify the booking again
            session.booking_id = None
            session.offered = []

        session.merge({key: values[key] for key in changed})
        return changed

    def _invalid_field(self, slots) -> Optional[str]:
        if slots.email and slots.email_valid is False:
            return "email"
        if slots.duration is not None and slots.duration not in ALLOWED_DURATIONS:
            return "duration"
        return None

    def apply_choice(self, session: SessionData, choice: int) -> bool:
        """
        Apply a 1-based pick from the options last offered.

        Returns:
            False if the number is out of range
        """
        if not 1 <= choice <= len(session.offered):
            return False

        option = session.offered[choice - 1]
        if option["kind"] == "booking":
            self.select_booking(session, option["id"], option["duration"])
        else:
            start = datetime.fromisoformat(option["start"]).astimezone(self.tz)
            session.merge({
                "date": start.date().isoformat(),
                "time": start.strftime("%H:%M"),
                "duration": option["duration"],
            })
        session.offered = []
        session.expected_field = None
        return True

    def select_booking(self, session: SessionData, booking_id: str, duration: int) -> None:
        """Fix the booking a reschedule or cancel applies to."""
        session.booking_id = booking_id
        if session.pinned_intent == Intent.RESCHEDULE:
            session.collected.setdefault("duration", duration)
