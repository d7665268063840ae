"""Conversation state machine."""

from enum import Enum
from typing import Set


class ConversationState(str, Enum):
    """States of one conversation session."""

    IDLE = "idle"
    COLLECTING = "collecting"
    CONFIRMING = "confirming"

    # Terminal states
    COMPLETE = "complete"
    ABORTED = "aborted"


# Valid state transitions
VALID_TRANSITIONS: dict[ConversationState, Set[ConversationState]] = {
    ConversationState.IDLE: {
        ConversationState.IDLE,  # General chat does not start a flow
        ConversationState.COLLECTING,
        ConversationState.CONFIRMING,
        ConversationState.ABORTED,
    },
    ConversationState.COLLECTING: {
        ConversationState.COLLECTING,
        ConversationState.CONFIRMING,
        ConversationState.COMPLETE,
        ConversationState.ABORTED,
    },
    ConversationState.CONFIRMING: {
        ConversationState.COLLECTING,  # Slot taken, or user corrects a field
        ConversationState.CONFIRMING,  # Unclear answer, or a changed detail
        ConversationState.COMPLETE,
        ConversationState.ABORTED,
    },
    ConversationState.COMPLETE: set(),
    ConversationState.ABORTED: set(),
}


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_terminal_state(state: ConversationState) -> bool:
    """Check if state is terminal (session is cleared afterwards)."""
    return state in {ConversationState.COMPLETE, ConversationState.ABORTED}
