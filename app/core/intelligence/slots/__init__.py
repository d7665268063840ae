"""Slot extraction module."""

from .types import ExtractedSlots
from .extractor import (
    SlotExtractor,
    get_slot_extractor,
)

__all__ = [
    # Types
    "ExtractedSlots",
    # Extractor
    "SlotExtractor",
    "get_slot_extractor",
]
