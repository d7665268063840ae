"""
Rule-based entity extraction.

Extracts: name, email, phone, company, date, time, duration, yes/no,
numbered choices and abort phrases.

Some answers carry no marker of what they are ("John Smith", "3"). Those are
only accepted when the caller says which field it is waiting for.
"""

import logging
import re
from datetime import date, time, timedelta
from typing import Optional

from app.core.booking.validation import is_valid_email, normalize_phone
from app.core.intelligence.intent.types import ConfirmationType
from .types import ExtractedSlots

logger = logging.getLogger(__name__)


MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
WEEKDAYS = {
    "monday": 0, "tuesday": 1, "wednesday": 2, "thursday": 3,
    "friday": 4, "saturday": 5, "sunday": 6,
}
ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5}
NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6, "seven": 7}

_MONTH = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"

EMAIL_RE = re.compile(r"[^\s@,;<>()]+@[^\s@,;<>()]+")
PHONE_RE = re.compile(r"(?<![\w@])\+?\d[\d\s\-().]{8,}\d(?![\w@])")
COMPANY_RE = re.compile(
    r"(?i:my company is|company is|company:|i work (?:at|for)|i'm from|i am from|"
    r"calling from|representing)\s+"
    r"([A-Z0-9][\w&.'\-]*(?:\s+[A-Z0-9][\w&.'\-]*)*)"
)
NAME_RE = re.compile(
    r"(?i:my name is|name is|name's|name:|call me)\s+([A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){0,3})"
)
INTRO_NAME_RE = re.compile(
    r"(?i:\bi'm|\bi am|\bthis is)\s+([A-Z][a-z'\-]+(?:\s+[A-Z][a-z'\-]+){0,2})"
)

ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})")
US_DATE_RE = re.compile(r"(?<![\d/])(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?(?![\d/])")
MONTH_DAY_RE = re.compile(
    rf"\b{_MONTH}\s+(\d{{1,2}})(?:st|nd|rd|th)?(?:,?\s+(\d{{4}}))?\b", re.IGNORECASE
)
DAY_MONTH_RE = re.compile(
    rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}(?:,?\s+(\d{{4}}))?\b", re.IGNORECASE
)
RELATIVE_DAYS_RE = re.compile(r"\bin\s+(\d{1,2}|one|two|three|four|five|six|seven)\s+days?\b", re.IGNORECASE)
WEEKDAY_RE = re.compile(
    r"\b(next|this|on)?\s*(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)

AMPM_TIME_RE = re.compile(
    r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?![a-z])", re.IGNORECASE
)
CLOCK_TIME_RE = re.compile(r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?![\d])")
NOON_RE = re.compile(r"\b(noon|midday)\b", re.IGNORECASE)
BARE_HOUR_RE = re.compile(
    r"^\s*(?:at\s+|around\s+)?(\d{1,2})(?::(\d{2}))?\s*(?:o'?clock)?\s*[.!]?\s*$",
    re.IGNORECASE,
)

DURATION_MIN_RE = re.compile(r"\b(\d{2})\s*-?\s*(?:min|mins|minute|minutes)\b", re.IGNORECASE)
HOUR_DURATION_RE = re.compile(r"\b(?:an|one|1)\s*-?\s*(?:hour|hr)\b", re.IGNORECASE)
HALF_HOUR_RE = re.compile(r"\bhalf\s+(?:an\s+)?hour\b", re.IGNORECASE)
QUARTER_HOUR_RE = re.compile(r"\bquarter\s+(?:of\s+)?(?:an\s+)?hour\b", re.IGNORECASE)

YES_RE = re.compile(
    r"^\s*(yes|yeah|yep|yup|sure|correct|confirm(ed)?|ok(ay)?|absolutely|definitely|"
    r"sounds good|that'?s right|that works|please do|go ahead|book it|perfect|y)\b",
    re.IGNORECASE,
)
NO_RE = re.compile(
    r"^\s*(no|nope|nah|not really|wrong|incorrect|don'?t|do not|n)\b",
    re.IGNORECASE,
)
ABORT_RE = re.compile(
    r"\b(never\s*mind|forget it|stop|abort|quit|exit|start over)\b", re.IGNORECASE
)
CHOICE_RE = re.compile(
    r"^\s*(?:option|number|no\.|#)?\s*([1-9])\s*[.)]?\s*(?:please)?\s*$", re.IGNORECASE
)
ORDINAL_RE = re.compile(r"\b(?:the\s+)?(first|second|third|fourth|fifth)\b", re.IGNORECASE)

NOT_NAMES = {
    "yes", "no", "ok", "okay", "sure", "hi", "hello", "hey", "thanks", "thank",
    "book", "booking", "appointment", "cancel", "reschedule", "today", "tomorrow",
    *WEEKDAYS,
}
# Words that end a name phrase ("my name is John and my email is ...")
NAME_STOPWORDS = {"and", "my", "email", "phone", "from", "at", "with", "i", "i'm", "calling"}


def _trim_name(raw: str) -> str:
    words = []
    for word in raw.split():
        if word.lower() in NAME_STOPWORDS:
            break
        words.append(word)
    return " ".join(words)


def _year_for(month: int, day: int, today: date, explicit: Optional[str]) -> Optional[date]:
    try:
        if explicit:
            return date(int(explicit), month, day)
        candidate = date(today.year, month, day)
        if candidate < today:
            candidate = date(today.year + 1, month, day)
        return candidate
    except ValueError:
        return None


class SlotExtractor:
    """Regex extraction of booking fields."""

    def extract(
        self,
        message: str,
        today: date,
        expected_field: Optional[str] = None,
    ) -> ExtractedSlots:
        """
        Extract slots from a message.

        Args:
            message: Raw message
            today: Reference date for relative expressions
            expected_field: Field the conversation is waiting for, if any

        Returns:
            ExtractedSlots with any found entities
        """
        slots = ExtractedSlots()
        text = message.strip()
        if not text:
            return slots

        remaining = text

        email_match = EMAIL_RE.search(remaining)
        if email_match:
            candidate = email_match.group(0).strip(".")
            slots.email = candidate.lower()
            slots.email_valid = is_valid_email(candidate)
            remaining = remaining.replace(email_match.group(0), " ")

        phone_match = PHONE_RE.search(remaining)
        if phone_match:
            digits = normalize_phone(phone_match.group(0))
            if 10 <= len(digits.lstrip("+")) <= 15:
                slots.phone = digits
                remaining = remaining.replace(phone_match.group(0), " ")

        company_match = COMPANY_RE.search(remaining)
        if company_match:
            slots.company = company_match.group(1).strip(" .")

        slots.abort = bool(ABORT_RE.search(remaining))
        slots.confirmation = self._confirmation(remaining)
        slots.duration = self._duration(remaining, expected_field)
        slots.date, slots.date_raw = self._date(remaining, today)
        slots.time, slots.time_raw = self._time(remaining, expected_field)
        slots.choice = self._choice(remaining, expected_field)
        slots.name = self._name(remaining, expected_field, slots)

        if slots.has_any():
            logger.debug(f"Extracted slots: {slots.to_dict()}")
        return slots

    # === Individual fields ===

    def _confirmation(self, text: str) -> Optional[ConfirmationType]:
        if YES_RE.search(text):
            return ConfirmationType.YES
        if NO_RE.search(text):
            return ConfirmationType.NO
        return None

    def _duration(self, text: str, expected_field: Optional[str]) -> Optional[int]:
        match = DURATION_MIN_RE.search(text)
        if match:
            return int(match.group(1))
        if QUARTER_HOUR_RE.search(text):
            return 15
        if HALF_HOUR_RE.search(text):
            return 30
        if HOUR_DURATION_RE.search(text):
            return 60
        if expected_field == "duration":
            bare = re.fullmatch(r"\s*(\d{2})\s*", text)
            if bare:
                return int(bare.group(1))
        return None

    def _date(self, text: str, today: date) -> tuple[Optional[date], Optional[str]]:
        match = ISO_DATE_RE.search(text)
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3))), match.group(0)
            except ValueError:
                pass

        match = MONTH_DAY_RE.search(text)
        if match:
            parsed = _year_for(MONTHS[match.group(1).lower()[:3]], int(match.group(2)), today, match.group(3))
            if parsed:
                return parsed, match.group(0)

        match = DAY_MONTH_RE.search(text)
        if match:
            parsed = _year_for(MONTHS[match.group(2).lower()[:3]], int(match.group(1)), today, match.group(3))
            if parsed:
                return parsed, match.group(0)

        match = US_DATE_RE.search(text)
        if match:
            year = match.group(3)
            if year and len(year) == 2:
                year = f"20{year}"
            parsed = _year_for(int(match.group(1)), int(match.group(2)), today, year)
            if parsed:
                return parsed, match.group(0)

        lowered = text.lower()
        if "day after tomorrow" in lowered:
            return today + timedelta(days=2), "day after tomorrow"
        if re.search(r"\btomorrow\b", lowered):
            return today + timedelta(days=1), "tomorrow"
        if re.search(r"\btoday\b", lowered):
            return today, "today"

        match = RELATIVE_DAYS_RE.search(text)
        if match:
            raw = match.group(1).lower()
            days = int(raw) if raw.isdigit() else NUMBER_WORDS[raw]
            return today + timedelta(days=days), match.group(0)

        match = WEEKDAY_RE.search(text)
        if match:
            target = WEEKDAYS[match.group(2).lower()]
            days_ahead = (target - today.weekday()) % 7
            if days_ahead == 0:
                days_ahead = 7
            return today + timedelta(days=days_ahead), match.group(0).strip()

        return None, None

    def _time(self, text: str, expected_field: Optional[str]) -> tuple[Optional[time], Optional[str]]:
        match = AMPM_TIME_RE.search(text)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2) or 0)
            is_pm = match.group(3).lower().startswith("p")
            if 1 <= hour <= 12 and minute < 60:
                if is_pm and hour != 12:
                    hour += 12
                elif not is_pm and hour == 12:
                    hour = 0
                return time(hour, minute), match.group(0)

        match = CLOCK_TIME_RE.search(text)
        if match:
            return time(int(match.group(1)), int(match.group(2))), match.group(0)

        match = NOON_RE.search(text)
        if match:
            return time(12, 0), match.group(0)

        if expected_field == "time":
            match = BARE_HOUR_RE.match(text)
            if match:
                hour = int(match.group(1))
                minute = int(match.group(2) or 0)
                if minute >= 60 or hour > 23:
                    return None, None
                # Business-hours reading of a bare hour
                if 1 <= hour <= 7:
                    hour += 12
                return time(hour, minute), match.group(0).strip()

        return None, None

    def _choice(self, text: str, expected_field: Optional[str]) -> Optional[int]:
        if expected_field != "choice":
            return None
        match = CHOICE_RE.match(text)
        if match:
            return int(match.group(1))
        match = ORDINAL_RE.search(text)
        if match:
            return ORDINALS[match.group(1).lower()]
        return None

    def _name(self, text: str, expected_field: Optional[str], slots: ExtractedSlots) -> Optional[str]:
        match = NAME_RE.search(text)
        if match:
            name = _trim_name(match.group(1))
            if name:
                return name.title()

        match = INTRO_NAME_RE.search(text)
        if match:
            name = _trim_name(match.group(1))
            if name and name.split()[0].lower() not in NOT_NAMES:
                return name

        if expected_field == "name":
            candidate = text.strip(" .!,")
            words = candidate.split()
            if (
                1 <= len(words) <= 4
                and all(re.fullmatch(r"[A-Za-z][A-Za-z'\-]*", w) for w in words)
                and words[0].lower() not in NOT_NAMES
                and slots.confirmation is None
                and not slots.abort
            ):
                return " ".join(w.capitalize() for w in words)

        return None


# Singleton
_extractor: Optional[SlotExtractor] = None


def get_slot_extractor() -> SlotExtractor:
    """Get singleton SlotExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = SlotExtractor()
    return _extractor
