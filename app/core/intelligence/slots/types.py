"""Slot types for entity extraction."""

from dataclasses import dataclass, fields
from datetime import date, time
from typing import Optional

from app.core.intelligence.intent.types import ConfirmationType


@dataclass
class ExtractedSlots:
    """Fields extracted from one message."""

    # Requester
    name: Optional[str] = None
    email: Optional[str] = None
    email_valid: Optional[bool] = None   # False when something email-like was malformed
    phone: Optional[str] = None
    company: Optional[str] = None

    # Date/time
    date: Optional[date] = None
    time: Optional[time] = None
    date_raw: Optional[str] = None       # "next Tuesday", "December 10"
    time_raw: Optional[str] = None       # "2pm", "noon"
    duration: Optional[int] = None       # minutes

    # Dialog control
    confirmation: Optional[ConfirmationType] = None
    choice: Optional[int] = None         # 1-based pick from a numbered list
    abort: bool = False

    def has_any(self) -> bool:
        """Check if any slots were extracted."""
        return any(
            getattr(self, f.name) not in (None, False)
            for f in fields(self)
        )

    def merge(self, other: "ExtractedSlots") -> "ExtractedSlots":
        """Merge with another ExtractedSlots, preferring non-None values from other."""
        merged = {}
        for f in fields(self):
            mine, theirs = getattr(self, f.name), getattr(other, f.name)
            if f.name == "abort":
                merged[f.name] = mine or theirs
            else:
                merged[f.name] = theirs if theirs is not None else mine
        return ExtractedSlots(**merged)

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        result = {}
        if self.name:
            result["name"] = self.name
        if self.email:
            result["email"] = self.email
        if self.email_valid is not None:
            result["email_valid"] = self.email_valid
        if self.phone:
            result["phone"] = self.phone
        if self.company:
            result["company"] = self.company
        if self.date:
            result["date"] = self.date.isoformat()
        if self.time:
            result["time"] = self.time.strftime("%H:%M")
        if self.date_raw:
            result["date_raw"] = self.date_raw
        if self.time_raw:
            result["time_raw"] = self.time_raw
        if self.duration:
            result["duration"] = self.duration
        if self.confirmation:
            result["confirmation"] = self.confirmation.value
        if self.choice is not None:
            result["choice"] = self.choice
        if self.abort:
            result["abort"] = True
        return result
