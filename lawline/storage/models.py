"""
Data models for conversation storage.
These define the shape of data flowing through the relay.

Conversations are immutable snapshots: every change produces a new value,
so the guest and authenticated paths never share a mutable object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

TITLE_MAX_CHARS = 20
TITLE_ELLIPSIS = "..."


def to_iso(dt: datetime) -> str:
    """UTC ISO-8601 with fixed microsecond precision (sorts lexically)."""
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def display_time(now: datetime | None = None) -> str:
    """Local wall-clock time shown next to a conversation in the UI."""
    now = now or datetime.now().astimezone()
    return now.strftime("%Y-%m-%d %H:%M:%S")


def derive_title(message: str) -> str:
    """First 20 characters of the opening message, with an ellipsis if cut."""
    if len(message) > TITLE_MAX_CHARS:
        return message[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return message


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: str                # "system", "user", "assistant"
    content: str
    timestamp: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_provider_format(self) -> dict:
        """Role/content pair sent upstream; timestamps are not forwarded."""
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass(frozen=True)
class Conversation:
    """An ordered, role-tagged message history owned by one identity."""
    id: str
    title: str
    owner_id: str
    time: str = field(default_factory=display_time)
    messages: tuple[Message, ...] = ()
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def start(cls, conversation_id: str, owner_id: str, priming: str, user_message: str) -> Conversation:
        """Seed a new conversation: system priming message, then the first user message."""
        return cls(
            id=conversation_id,
            title=derive_title(user_message),
            owner_id=owner_id,
            messages=(
                Message(role="system", content=priming),
                Message(role="user", content=user_message),
            ),
        )

    def with_message(self, message: Message) -> Conversation:
        return replace(self, messages=self.messages + (message,))

    def with_time(self, time: str) -> Conversation:
        return replace(self, time=time)

    def to_provider_messages(self) -> list[dict]:
        return [m.to_provider_format() for m in self.messages]

    def to_dict(self, owner_key: str = "userId") -> dict:
        """Document shape handed to the browser (the `_id` key is what the UI expects)."""
        return {
            "_id": self.id,
            "title": self.title,
            owner_key: self.owner_id,
            "time": self.time,
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass(frozen=True)
class Account:
    """A registered user. Lookup matches either the login name or display name."""
    username: str
    name: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class UsageLogEntry:
    """One accepted user query, for reporting."""
    actor_id: str
    is_guest: bool
    timestamp: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=lambda: uuid4().hex)
