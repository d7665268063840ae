"""
Conversation layer for the booking assistant.

Components:
- ConversationEngine: Main orchestrator (one message in, one reply out)
- ConversationFlow: Dialog state machine
- ResponseGenerator: Scripted replies
- VoiceFunctions: Fixed-schema function calls for the voice channel
"""

from app.core.scheduling.engine import ConversationEngine, EngineResponse
from app.core.scheduling.flow import ConversationFlow, FlowAction
from app.core.scheduling.response import ResponseGenerator
from app.core.scheduling.voice import TOOL_SCHEMAS, VoiceFunctions

__all__ = [
    # Engine
    "ConversationEngine",
    "EngineResponse",
    # Flow
    "ConversationFlow",
    "FlowAction",
    # Responses
    "ResponseGenerator",
    # Voice
    "TOOL_SCHEMAS",
    "VoiceFunctions",
]
