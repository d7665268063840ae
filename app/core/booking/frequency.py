"""
Frequency Limiter

Caps how many bookings one requester (by email) may hold inside a rolling
window. The window length scales with the requested duration.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.booking.store import BookingStore
from app.core.booking.types import FrequencyRule
from app.core.errors import FrequencyLimitExceeded, ValidationError


logger = logging.getLogger(__name__)


# duration minutes -> (max bookings, window minutes)
DURATION_RULES: dict[int, FrequencyRule] = {
    15: FrequencyRule(max_bookings=2, window_minutes=90),
    30: FrequencyRule(max_bookings=2, window_minutes=180),
    45: FrequencyRule(max_bookings=2, window_minutes=300),
    60: FrequencyRule(max_bookings=2, window_minutes=720),
}


def rule_for(duration_minutes: int) -> FrequencyRule:
    """
    Look up the rule for a duration.

    Raises:
        ValidationError: Duration has no rule
    """
    try:
        return DURATION_RULES[duration_minutes]
    except KeyError:
        raise ValidationError(f"Unsupported duration: {duration_minutes} minutes") from None


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of a frequency check."""

    allowed: bool
    count: int
    rule: FrequencyRule

    def __bool__(self) -> bool:
        return self.allowed


class FrequencyLimiter:
    """
    Counts a requester's non-cancelled bookings whose start falls in
    [requested_start - window, requested_start). All durations count; the
    window is sized by the duration being requested.
    """

    def __init__(self, store: BookingStore):
        self.store = store

    async def check(
        self,
        email: str,
        requested_start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> LimitCheck:
        rule = rule_for(duration_minutes)
        prior = await self.store.find_for_email(
            email,
            window_start=requested_start - rule.window,
            window_end=requested_start,
            exclude_id=exclude_booking_id,
        )
        return LimitCheck(allowed=len(prior) < rule.max_bookings, count=len(prior), rule=rule)

    async def check_limit(
        self,
        email: str,
        requested_start: datetime,
        duration_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> FrequencyRule:
        """
        Enforce the limit.

        Returns:
            The rule that was applied

        Raises:
            FrequencyLimitExceeded: Requester is at the limit for this window
        """
        result = await self.check(email, requested_start, duration_minutes, exclude_booking_id)
        if not result:
            logger.warning(
                f"Frequency limit hit for {email}: {result.count} bookings in "
                f"{result.rule.window_minutes} min before {requested_start.isoformat()}"
            )
            raise FrequencyLimitExceeded(
                limit=result.rule.max_bookings,
                window_minutes=result.rule.window_minutes,
                duration_minutes=duration_minutes,
            )
        return result.rule
