"""
Message parsing.

A MessageParser turns one raw message into a typed ParseResult
(intent, slots, confidence). The dialog state machine only ever sees
ParseResult, so parsers can be swapped without touching the flow.

Two implementations:
- RuleBasedParser: keyword intents + regex slot extraction (default)
- ClaudeMessageParser: Anthropic Messages API, falling back to rules
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional

from app.config import get_settings
from app.core.booking.validation import is_valid_email
from app.core.intelligence.intent.classifier import IntentClassifier, get_intent_classifier
from app.core.intelligence.intent.types import ConfirmationType, Intent
from app.core.intelligence.slots.extractor import SlotExtractor, get_slot_extractor
from app.core.intelligence.slots.types import ExtractedSlots
from app.infra.claude import ClaudeClient, get_claude_client

logger = logging.getLogger(__name__)


@dataclass
class ParseContext:
    """What the parser needs to know about the conversation."""

    today: date
    timezone: str = "Europe/London"
    expected_field: Optional[str] = None
    pinned_intent: Optional[Intent] = None


@dataclass
class ParseResult:
    """Typed parser output."""

    intent: Intent = Intent.GENERAL
    slots: ExtractedSlots = field(default_factory=ExtractedSlots)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "slots": self.slots.to_dict(),
            "confidence": self.confidence,
        }


class MessageParser(ABC):
    """Parser interface."""

    @abstractmethod
    async def parse(self, text: str, context: ParseContext) -> ParseResult:
        """Parse one message."""


class RuleBasedParser(MessageParser):
    """Keyword intent classification and regex slot extraction."""

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        extractor: Optional[SlotExtractor] = None,
    ):
        self.classifier = classifier or get_intent_classifier()
        self.extractor = extractor or get_slot_extractor()

    async def parse(self, text: str, context: ParseContext) -> ParseResult:
        intent, confidence = self.classifier.classify(text)
        slots = self.extractor.extract(text, context.today, context.expected_field)
        return ParseResult(intent=intent, slots=slots, confidence=confidence)


PARSE_PROMPT = """You read messages sent to a meeting booking assistant.

Today is {today} (timezone {timezone}).
The assistant is currently waiting for: {expected}.
The conversation is about: {pinned}.

Classify the intent as one of: book, reschedule, cancel, general.
Extract any of these fields the message contains:
- name: the requester's full name
- email
- phone
- company
- date: YYYY-MM-DD (resolve relative dates against today)
- time: HH:MM, 24-hour
- duration: minutes, one of 15, 30, 45, 60
- confirmation: "yes" or "no" if the message answers a yes/no question
- choice: integer, if the message picks a numbered option
- abort: true if the requester wants to stop

## Message

"{message}"

## Response

Respond with ONLY valid JSON (use null for fields not mentioned):
{{
    "intent": "<book|reschedule|cancel|general>",
    "confidence": <0.0-1.0>,
    "name": null, "email": null, "phone": null, "company": null,
    "date": null, "time": null, "duration": null,
    "confirmation": null, "choice": null, "abort": false
}}"""


class ClaudeMessageParser(MessageParser):
    """
    LLM-backed parser.

    Any client or decoding failure falls back to the rule parser, so a
    parser outage degrades quality but never stops a conversation.
    """

    def __init__(self, client: Optional[ClaudeClient] = None, fallback: Optional[MessageParser] = None):
        """Initialize parser.

        Args:
            client: ClaudeClient (created lazily from settings if omitted)
            fallback: Parser used when Claude fails
        """
        self._client = client
        self.fallback = fallback or RuleBasedParser()

    async def _get_client(self) -> ClaudeClient:
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def parse(self, text: str, context: ParseContext) -> ParseResult:
        if not text.strip():
            return ParseResult(intent=Intent.GENERAL, confidence=1.0)

        prompt = PARSE_PROMPT.format(
            today=context.today.isoformat(),
            timezone=context.timezone,
            expected=context.expected_field or "nothing in particular",
            pinned=context.pinned_intent.value if context.pinned_intent else "not decided yet",
            message=text.strip(),
        )

        try:
            client = await self._get_client()
            response = await client.generate(prompt=prompt, max_tokens=300, temperature=0)
            return self._parse_response(response.content)
        except Exception as e:
            logger.warning(f"Claude parse failed, using rule parser: {e}")
            return await self.fallback.parse(text, context)

    def _parse_response(self, response: str) -> ParseResult:
        """Parse LLM JSON response. Raises ValueError on malformed output."""
        response = response.strip()
        if response.startswith("```"):
            lines = response.split("\n")[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            response = "\n".join(lines).strip()

        data = json.loads(response)

        try:
            intent = Intent(str(data.get("intent", "general")).lower())
        except ValueError:
            intent = Intent.GENERAL

        slots = ExtractedSlots(
            name=data.get("name") or None,
            phone=data.get("phone") or None,
            company=data.get("company") or None,
            abort=bool(data.get("abort")),
        )
        if data.get("email"):
            slots.email = str(data["email"]).strip().lower()
            slots.email_valid = is_valid_email(slots.email)
        if data.get("date"):
            slots.date = date.fromisoformat(data["date"])
            slots.date_raw = data["date"]
        if data.get("time"):
            slots.time = time.fromisoformat(data["time"])
            slots.time_raw = data["time"]
        if data.get("duration"):
            slots.duration = int(data["duration"])
        if data.get("confirmation"):
            slots.confirmation = ConfirmationType(str(data["confirmation"]).lower())
        if data.get("choice") is not None:
            slots.choice = int(data["choice"])

        return ParseResult(
            intent=intent,
            slots=slots,
            confidence=float(data.get("confidence", 0.5)),
        )


# Singleton
_parser: Optional[MessageParser] = None


def get_message_parser() -> MessageParser:
    """Get the configured parser."""
    global _parser
    if _parser is None:
        settings = get_settings()
        if settings.parser_backend == "claude" and settings.anthropic_api_key:
            _parser = ClaudeMessageParser()
        else:
            _parser = RuleBasedParser()
        logger.info(f"Message parser: {type(_parser).__name__}")
    return _parser
