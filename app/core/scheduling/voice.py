"""
Voice function surface.

The voice channel drives the same booking operations as chat through
fixed-schema function calls. Each function maps onto one BookingManager
operation and always returns a plain dict with ``success`` and a spoken
``message``; errors are turned into scripted sentences.
"""

import datetime as dt
import logging
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ArgumentsError

from app.core.booking.lifecycle import BookingManager
from app.core.booking.types import Booking, BookingRequest
from app.core.booking.validation import validate_duration
from app.core.errors import (
    ConflictError,
    FrequencyLimitExceeded,
    NotFoundError,
    StoreError,
    ValidationError,
)
from app.core.scheduling.response import ResponseGenerator

logger = logging.getLogger(__name__)


class CheckAvailabilityArgs(BaseModel):
    """Arguments for checkAvailability."""

    date: dt.date = Field(..., description="Day to check (YYYY-MM-DD)")
    duration: int = Field(default=30, description="Meeting length in minutes: 15, 30, 45 or 60")


class BookAppointmentArgs(BaseModel):
    """Arguments for bookAppointment."""

    name: str = Field(..., min_length=1, description="Full name of the person booking")
    email: str = Field(..., description="Email address for the confirmation")
    phone: Optional[str] = Field(default=None, description="Phone number")
    company: Optional[str] = Field(default=None, description="Company name")
    date: dt.date = Field(..., description="Day of the meeting (YYYY-MM-DD)")
    time: dt.time = Field(..., description="Local start time (HH:MM, 24-hour)")
    duration: int = Field(default=30, description="Meeting length in minutes: 15, 30, 45 or 60")


class RescheduleAppointmentArgs(BaseModel):
    """Arguments for rescheduleAppointment."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., description="Email address the booking was made with")
    booking_id: str = Field(..., alias="bookingId", description="Booking to move")
    new_date: dt.date = Field(..., alias="newDate", description="New day (YYYY-MM-DD)")
    new_time: dt.time = Field(..., alias="newTime", description="New local start time (HH:MM)")


class CancelAppointmentArgs(BaseModel):
    """Arguments for cancelAppointment."""

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., description="Email address the booking was made with")
    booking_id: str = Field(..., alias="bookingId", description="Booking to cancel")


FUNCTIONS: dict[str, tuple[type[BaseModel], str]] = {
    "checkAvailability": (
        CheckAvailabilityArgs,
        "List free appointment times on a given day.",
    ),
    "bookAppointment": (
        BookAppointmentArgs,
        "Book an appointment once the caller has confirmed the details.",
    ),
    "rescheduleAppointment": (
        RescheduleAppointmentArgs,
        "Move an existing appointment to a new date and time.",
    ),
    "cancelAppointment": (
        CancelAppointmentArgs,
        "Cancel an existing appointment.",
    ),
}

TOOL_SCHEMAS: list[dict] = [
    {
        "name": name,
        "description": description,
        "parameters": model.model_json_schema(by_alias=True),
    }
    for name, (model, description) in FUNCTIONS.items()
]


def _public(booking: Booking) -> dict:
    """Booking fields safe to hand back to the voice agent."""
    return {
        "booking_id": booking.id,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "duration_minutes": booking.duration_minutes,
        "status": booking.status.value,
    }


class VoiceFunctions:
    """
    Dispatcher for voice function calls.

    Usage:
        voice = VoiceFunctions(manager, responses, timezone="Europe/London")
        result = await voice.dispatch("checkAvailability", {"date": "2024-12-10"})
    """

    def __init__(
        self,
        manager: BookingManager,
        responses: ResponseGenerator,
        timezone: str = "Europe/London",
    ):
        self.manager = manager
        self.responses = responses
        self.tz = ZoneInfo(timezone)
        self._handlers: dict[str, Callable[[Any], Awaitable[dict]]] = {
            "checkAvailability": self.check_availability,
            "bookAppointment": self.book_appointment,
            "rescheduleAppointment": self.reschedule_appointment,
            "cancelAppointment": self.cancel_appointment,
        }

    @property
    def schemas(self) -> list[dict]:
        return TOOL_SCHEMAS

    async def dispatch(self, name: str, arguments: Optional[dict] = None) -> dict:
        """Run one function call.

        Args:
            name: Function name from TOOL_SCHEMAS
            arguments: Raw JSON arguments

        Returns:
            Result dict, always with ``success`` and ``message``
        """
        if name not in self._handlers:
            logger.warning(f"Unknown voice function: {name}")
            return {"success": False, "message": "Sorry, I can't do that over the phone."}

        model, _ = FUNCTIONS[name]
        try:
            args = model.model_validate(arguments or {})
        except ArgumentsError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            logger.info(f"Invalid arguments for {name}: {fields}")
            return {
                "success": False,
                "message": "Some details were missing or unclear. Could you repeat them?",
                "invalid_fields": fields,
            }

        logger.info(f"Voice function call: {name}")
        try:
            return await self._handlers[name](args)

        except ConflictError as e:
            return {
                "success": False,
                "message": self.responses.conflict(e.alternatives),
                "alternatives": [slot.to_dict() for slot in e.alternatives],
            }
        except FrequencyLimitExceeded as e:
            return {
                "success": False,
                "message": self.responses.frequency_limit(e),
                "limit": e.limit,
                "window_minutes": e.window_minutes,
            }
        except ValidationError as e:
            return {
                "success": False,
                "message": self.responses.validation(e.errors, "Could you check the details?"),
                "errors": e.errors,
            }
        except NotFoundError:
            return {"success": False, "message": self.responses.not_found()}
        except StoreError as e:
            logger.error(f"Store failure in voice function {name}: {e}")
            return {"success": False, "message": self.responses.store_error()}
        except Exception as e:
            logger.exception(f"Voice function {name} failed: {e}")
            return {"success": False, "message": self.responses.unexpected_error()}

    # === Functions ===

    async def check_availability(self, args: CheckAvailabilityArgs) -> dict:
        errors = validate_duration(args.duration)
        if errors:
            raise ValidationError(errors[0], errors)

        start = dt.datetime.combine(args.date, dt.time(0), tzinfo=self.tz)
        end = start + dt.timedelta(days=1)
        slots = list(await self.manager.available_slots(
            start.astimezone(dt.timezone.utc),
            end.astimezone(dt.timezone.utc),
            args.duration,
        ))

        day = f"{args.date:%A} {args.date.day} {args.date:%B}"
        if not slots:
            message = f"There are no free {args.duration}-minute slots on {day}."
        else:
            times = ", ".join(f"{s.start_time.astimezone(self.tz):%H:%M}" for s in slots[:5])
            message = f"On {day} I have {len(slots)} free times, starting with {times}."
        return {
            "success": True,
            "message": message,
            "date": args.date.isoformat(),
            "duration": args.duration,
            "slots": [slot.to_dict() for slot in slots],
        }

    async def book_appointment(self, args: BookAppointmentArgs) -> dict:
        booking = await self.manager.create(BookingRequest(
            name=args.name,
            email=args.email,
            start_time=dt.datetime.combine(args.date, args.time, tzinfo=self.tz),
            duration_minutes=args.duration,
            phone=args.phone,
            company=args.company,
        ))
        return {"success": True, "message": self.responses.booked(booking), **_public(booking)}

    async def reschedule_appointment(self, args: RescheduleAppointmentArgs) -> dict:
        booking = await self.manager.reschedule(
            args.booking_id,
            dt.datetime.combine(args.new_date, args.new_time, tzinfo=self.tz),
            email=args.email,
        )
        return {"success": True, "message": self.responses.rescheduled(booking), **_public(booking)}

    async def cancel_appointment(self, args: CancelAppointmentArgs) -> dict:
        booking = await self.manager.cancel(args.booking_id, email=args.email)
        return {"success": True, "message": self.responses.cancelled(booking), **_public(booking)}
