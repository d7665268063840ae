"""
Keyword intent classification.

Reschedule and cancel are checked before book: "reschedule my booking"
mentions booking too, but wants something else.
"""

import logging
import re
from typing import Optional

from .types import Intent

logger = logging.getLogger(__name__)


RESCHEDULE_PATTERNS = [
    r"\breschedul\w*",
    r"\bre-schedul\w*",
    r"\bmove (my|the|our) (appointment|booking|meeting|call)",
    r"\bchange (my|the|our) (appointment|booking|meeting|call|time)",
    r"\bdifferent time\b",
    r"\bpostpone\b",
    r"\bpush (it|my|the)\b.*\bback\b",
]

CANCEL_PATTERNS = [
    r"\bcancel\w*",
    r"\bcall(ing)? off\b",
    r"\bcan'?t make it\b",
    r"\bcannot make it\b",
    r"\bdelete (my|the) (appointment|booking|meeting)",
]

BOOK_PATTERNS = [
    r"\bbook\w*",
    r"\bschedul\w*",
    r"\bappointment\b",
    r"\bset up (a|an) (meeting|call|appointment)",
    r"\bmeeting\b",
    r"\bconsultation\b",
    r"\bdemo\b",
    r"\bavailab\w*",
    r"\bfree slot",
    r"\bmake (a|an) (appointment|booking)",
]

_COMPILED: list[tuple[Intent, list[re.Pattern]]] = [
    (Intent.RESCHEDULE, [re.compile(p, re.IGNORECASE) for p in RESCHEDULE_PATTERNS]),
    (Intent.CANCEL, [re.compile(p, re.IGNORECASE) for p in CANCEL_PATTERNS]),
    (Intent.BOOK, [re.compile(p, re.IGNORECASE) for p in BOOK_PATTERNS]),
]


class IntentClassifier:
    """Keyword-based classifier returning an intent and a confidence."""

    def classify(self, message: str) -> tuple[Intent, float]:
        """
        Classify a message.

        Args:
            message: Raw user message

        Returns:
            (intent, confidence). GENERAL with 0.5 when nothing matched.
        """
        text = message.strip()
        if not text:
            return Intent.GENERAL, 1.0

        for intent, patterns in _COMPILED:
            hits = sum(1 for p in patterns if p.search(text))
            if hits:
                confidence = min(0.6 + 0.15 * hits, 0.95)
                logger.debug(f"Keyword intent {intent.value} ({hits} hits)")
                return intent, confidence

        return Intent.GENERAL, 0.5


# Singleton
_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier
