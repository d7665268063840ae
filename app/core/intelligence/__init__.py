"""
Intelligence Layer Module

Turns raw messages into typed parse results and keeps per-session
dialog state.

Usage:
    from app.core.intelligence import (
        ParseContext,
        get_message_parser,
        get_session_store,
    )

    parser = get_message_parser()
    result = await parser.parse("Book me in tomorrow at 2pm", ParseContext(today=date.today()))
    print(result.intent)       # Intent.BOOK
    print(result.slots.time)   # 14:00

    store = await get_session_store()
    async with store.lock(session_id):
        session = await store.get(session_id)
"""

# Intent Classification
from app.core.intelligence.intent.types import Intent, ConfirmationType
from app.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
)

# Slot Extraction
from app.core.intelligence.slots.types import ExtractedSlots
from app.core.intelligence.slots.extractor import (
    SlotExtractor,
    get_slot_extractor,
)

# Parsing
from app.core.intelligence.parser import (
    ParseContext,
    ParseResult,
    MessageParser,
    RuleBasedParser,
    ClaudeMessageParser,
    get_message_parser,
)

# Session Management
from app.core.intelligence.session.state import (
    ConversationState,
    can_transition,
    is_terminal_state,
)
from app.core.intelligence.session.models import SessionData
from app.core.intelligence.session.store import (
    SessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    get_session_store,
)

__all__ = [
    # Intent
    "Intent",
    "ConfirmationType",
    "IntentClassifier",
    "get_intent_classifier",
    # Slots
    "ExtractedSlots",
    "SlotExtractor",
    "get_slot_extractor",
    # Parsing
    "ParseContext",
    "ParseResult",
    "MessageParser",
    "RuleBasedParser",
    "ClaudeMessageParser",
    "get_message_parser",
    # Session
    "ConversationState",
    "can_transition",
    "is_terminal_state",
    "SessionData",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "get_session_store",
]
