"""Session management module: state machine, data model and storage."""

from .state import ConversationState, can_transition, is_terminal_state
from .models import SessionData
from .store import (
    SessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    get_session_store,
)

__all__ = [
    # State
    "ConversationState",
    "can_transition",
    "is_terminal_state",
    # Models
    "SessionData",
    # Store
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "get_session_store",
]
