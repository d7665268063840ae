"""Session data model stored per conversation."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from app.core.intelligence.intent.types import Intent
from .state import ConversationState


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class SessionData:
    """
    Dialog state for one conversation.

    ``pinned_intent`` is set once the first booking-related intent is seen
    and never re-classified afterwards: follow-up answers ("John Smith",
    "tomorrow") carry no intent keywords.

    ``collected`` holds JSON-friendly values only (ISO strings for dates and
    times) so the session round-trips through Redis unchanged.
    """

    session_id: str = field(default_factory=lambda: str(uuid4()))
    state: ConversationState = ConversationState.IDLE
    pinned_intent: Optional[Intent] = None
    collected: dict[str, Any] = field(default_factory=dict)
    expected_field: Optional[str] = None

    # Numbered options last shown to the user (slots or bookings)
    offered: list[dict] = field(default_factory=list)

    booking_id: Optional[str] = None
    message_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def pin(self, intent: Intent) -> None:
        if self.pinned_intent is None and intent.is_booking_related:
            self.pinned_intent = intent

    def merge(self, values: dict[str, Any]) -> None:
        """Merge values, ignoring None."""
        for key, value in values.items():
            if value is not None:
                self.collected[key] = value

    def reset(self) -> None:
        """Forget the current flow, keep the session id."""
        self.state = ConversationState.IDLE
        self.pinned_intent = None
        self.collected = {}
        self.expected_field = None
        self.offered = []
        self.booking_id = None

    def to_json(self) -> str:
        """Convert to JSON string for storage."""
        return json.dumps({
            "session_id": self.session_id,
            "state": self.state.value,
            "pinned_intent": self.pinned_intent.value if self.pinned_intent else None,
            "collected": self.collected,
            "expected_field": self.expected_field,
            "offered": self.offered,
            "booking_id": self.booking_id,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        })

    @classmethod
    def from_json(cls, json_str: str) -> "SessionData":
        """Create from JSON string."""
        data = json.loads(json_str)
        pinned = data.get("pinned_intent")
        return cls(
            session_id=data["session_id"],
            state=ConversationState(data.get("state", "idle")),
            pinned_intent=Intent(pinned) if pinned else None,
            collected=data.get("collected", {}),
            expected_field=data.get("expected_field"),
            offered=data.get("offered", []),
            booking_id=data.get("booking_id"),
            message_count=data.get("message_count", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return json.loads(self.to_json())
