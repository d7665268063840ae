"""Intent classification module."""

from .types import Intent, ConfirmationType
from .classifier import (
    IntentClassifier,
    get_intent_classifier,
)

__all__ = [
    # Types
    "Intent",
    "ConfirmationType",
    # Classifier
    "IntentClassifier",
    "get_intent_classifier",
]
