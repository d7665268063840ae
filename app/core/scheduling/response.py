"""
Scripted replies for the booking assistant.

Every user-visible sentence comes from here. Error kinds are rendered in
plain language; internal codes, exception text and integration details
never reach the chat or voice channel.
"""

import logging
from datetime import date, datetime, time
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from app.core.booking.types import Booking, TimeSlot
from app.core.errors import FrequencyLimitExceeded
from app.core.intelligence.intent.types import Intent

logger = logging.getLogger(__name__)


FIELD_PROMPTS = {
    "name": "Could I take your name, please?",
    "email": "What email address should I use?",
    "date": "What day would you like?",
    "time": "What time works for you?",
    "duration": "How long should the meeting be: 15, 30, 45 or 60 minutes?",
    "confirmation": "Please answer yes or no.",
}

LOOKUP_PROMPTS = {
    Intent.RESCHEDULE: "Sure, I can move your appointment. What email address was it booked under?",
    Intent.CANCEL: "Sure, I can cancel your appointment. What email address was it booked under?",
}


def _minutes(window_minutes: int) -> str:
    if window_minutes % 60 == 0:
        hours = window_minutes // 60
        return "1 hour" if hours == 1 else f"{hours} hours"
    return f"{window_minutes} minutes"


class ResponseGenerator:
    """
    Template replies.

    Times are shown in the business timezone.
    """

    def __init__(self, timezone: str = "Europe/London"):
        self.tz = ZoneInfo(timezone)

    # === Formatting ===

    def format_when(self, moment: datetime) -> str:
        """'Tuesday 10 December at 14:00' in local time."""
        local = moment.astimezone(self.tz)
        return f"{local:%A} {local.day} {local:%B} at {local:%H:%M}"

    def format_collected_when(self, collected: dict) -> str:
        day = date.fromisoformat(collected["date"])
        at = time.fromisoformat(collected["time"])
        return f"{day:%A} {day.day} {day:%B} at {at:%H:%M}"

    def format_slots(self, slots: Sequence[TimeSlot]) -> str:
        return "\n".join(
            f"{i}. {self.format_when(slot.start_time)}" for i, slot in enumerate(slots, 1)
        )

    def format_offered(self, offered: Sequence[dict]) -> str:
        """Numbered list of options stored on the session."""
        return "\n".join(
            f"{i}. {self.format_when(datetime.fromisoformat(option['start']))}"
            for i, option in enumerate(offered, 1)
        )

    # === Collection ===

    def prompt(self, field: str, collected: Optional[dict] = None, intent: Optional[Intent] = None) -> str:
        """Ask for one field."""
        collected = collected or {}
        name = collected.get("name")

        if field == "email" and intent in LOOKUP_PROMPTS and not collected:
            return LOOKUP_PROMPTS[intent]
        if field == "name" and intent == Intent.BOOK and not collected:
            return "I'd be happy to book that for you. " + FIELD_PROMPTS["name"]
        if field == "email" and name:
            return f"Thanks, {name.split()[0]}. {FIELD_PROMPTS['email']}"
        if field == "date" and intent == Intent.RESCHEDULE:
            return "What day would you like to move it to?"
        if field == "time" and collected.get("date"):
            day = date.fromisoformat(collected["date"])
            return f"What time works for you on {day:%A} {day.day} {day:%B}?"
        return FIELD_PROMPTS.get(field, "Could you tell me a bit more?")

    def reprompt(
        self,
        field: str,
        collected: Optional[dict] = None,
        offered: Optional[Sequence[dict]] = None,
    ) -> str:
        """Field was present but unusable; ask again."""
        if field == "email":
            return "That email address doesn't look quite right. Could you type it again?"
        if field == "duration":
            return "I can book 15, 30, 45 or 60 minutes. Which would you like?"
        if field == "choice":
            if offered:
                return f"Please reply with one of these numbers:\n{self.format_offered(offered)}"
            return "Please pick one of the numbered options, or tell me another time."
        if field == "confirmation":
            return "Sorry, I need a clear yes or no. Shall I go ahead?"
        return "Sorry, I didn't catch that. " + self.prompt(field, collected)

    def validation(self, errors: Sequence[str], follow_up: str) -> str:
        return f"Sorry, that didn't work: {'; '.join(errors)}. {follow_up}"

    # === Confirmation ===

    def confirm(self, intent: Intent, collected: dict, booking: Optional[Booking] = None) -> str:
        if intent == Intent.CANCEL and booking is not None:
            return (
                f"You have an appointment on {self.format_when(booking.start_time)}. "
                f"Shall I cancel it?"
            )

        when = self.format_collected_when(collected)
        duration = collected.get("duration")
        if intent == Intent.RESCHEDULE and booking is not None:
            return (
                f"I'll move your appointment from {self.format_when(booking.start_time)} "
                f"to {when} ({duration} minutes). Shall I go ahead?"
            )

        lines = ["Let me confirm the details:"]
        lines.append(f"- Name: {collected.get('name')}")
        lines.append(f"- Email: {collected.get('email')}")
        lines.append(f"- When: {when}")
        lines.append(f"- Duration: {duration} minutes")
        if collected.get("company"):
            lines.append(f"- Company: {collected['company']}")
        lines.append("\nShall I book it?")
        return "\n".join(lines)

    # === Outcomes ===

    def booked(self, booking: Booking) -> str:
        first = booking.name.split()[0] if booking.name else ""
        name_part = f", {first}" if first else ""
        return (
            f"You're booked{name_part}! {self.format_when(booking.start_time)} "
            f"for {booking.duration_minutes} minutes. "
            f"A confirmation will be sent to {booking.email}."
        )

    def rescheduled(self, booking: Booking) -> str:
        return (
            f"Done. Your appointment is now on {self.format_when(booking.start_time)} "
            f"for {booking.duration_minutes} minutes."
        )

    def cancelled(self, booking: Booking) -> str:
        return (
            f"Your appointment on {self.format_when(booking.start_time)} has been cancelled."
        )

    def conflict(self, alternatives: Sequence[TimeSlot]) -> str:
        if not alternatives:
            return (
                "Sorry, that time is no longer available and I couldn't find anything "
                "close to it. Would you like to try another day?"
            )
        return (
            "Sorry, that time is taken. These times are free:\n"
            f"{self.format_slots(alternatives)}\n"
            "Reply with a number, or suggest another time."
        )

    def frequency_limit(self, error: FrequencyLimitExceeded) -> str:
        return (
            f"Sorry, you can only have {error.limit} {error.duration_minutes}-minute "
            f"bookings within {_minutes(error.window_minutes)}, and that limit has been "
            f"reached. Please choose a later time or get in touch with us directly."
        )

    def store_error(self) -> str:
        return "I'm sorry, something went wrong on our side and nothing was saved. Please try again in a moment."

    def unexpected_error(self) -> str:
        return "I'm sorry, I ran into a problem handling that. Could you try again?"

    # === Lookup ===

    def choose_booking(self, bookings: Sequence[Booking]) -> str:
        lines = ["I found more than one upcoming appointment:"]
        for i, booking in enumerate(bookings, 1):
            lines.append(
                f"{i}. {self.format_when(booking.start_time)} ({booking.duration_minutes} minutes)"
            )
        lines.append("Which one do you mean?")
        return "\n".join(lines)

    def no_bookings(self, email: str) -> str:
        return (
            f"I couldn't find any upcoming appointments for {email}. "
            f"Is there another email address it might be under?"
        )

    def not_found(self) -> str:
        return "I couldn't find that appointment any more. It may already have been changed."

    # === Dialog control ===

    def general_help(self) -> str:
        return (
            "I can book, reschedule or cancel appointments. "
            "Just tell me what you'd like to do."
        )

    def aborted(self, intent: Optional[Intent] = None) -> str:
        if intent == Intent.CANCEL:
            return "Okay, I've left your appointment as it is."
        if intent == Intent.RESCHEDULE:
            return "Okay, your appointment stays where it is."
        return "No problem, I've stopped. Nothing was booked or changed."

    def busy(self) -> str:
        return "I'm still working on your last message. One moment, please."
