"""Intent types for conversation classification."""

from enum import Enum


class Intent(str, Enum):
    """What the requester wants."""

    BOOK = "book"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    GENERAL = "general"

    @property
    def is_booking_related(self) -> bool:
        """Booking intents pin the session once classified."""
        return self in {Intent.BOOK, Intent.RESCHEDULE, Intent.CANCEL}


class ConfirmationType(str, Enum):
    """Types of confirmation responses."""

    YES = "yes"
    NO = "no"
