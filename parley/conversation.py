"""
Conversation data model and the in-memory message log.

Messages are immutable once created. Content is a tuple of parts, each part
either TextPart or BlobPart (binary attachment with a MIME type).

Truncation keeps every system message and the most recent
(max_length - system_count) non-system messages, preserving relative order.
"""

from __future__ import annotations

import base64
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union
from uuid import uuid4

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    MODEL = "model"


# Only these go over the wire; system messages stay local
PROVIDER_ROLES = (Role.USER, Role.MODEL)


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_dict(self) -> dict:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class BlobPart:
    """A binary attachment (image, PDF page, ...)."""
    data: bytes
    mime_type: str

    @property
    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_dict(self) -> dict:
        return {"type": "blob", "mime_type": self.mime_type, "size": len(self.data)}


Part = Union[TextPart, BlobPart]


@dataclass(frozen=True)
class Message:
    """A single message in a conversation."""
    role: Role
    parts: tuple[Part, ...]
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def text(cls, role: Role, text: str) -> Message:
        return cls(role=Role(role), parts=(TextPart(text),))

    @property
    def content(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "parts": [p.to_dict() for p in self.parts],
            "timestamp": self.timestamp,
        }


def truncate_messages(messages: list[Message], max_length: int) -> list[Message]:
    """
    Apply the history bound. System messages are exempt; when max_length is
    smaller than the system count, all non-system messages are dropped and
    the system messages are kept as they are.
    """
    if len(messages) <= max_length:
        return list(messages)

    system_count = sum(1 for m in messages if m.role == Role.SYSTEM)
    # Non-system messages to drop, oldest first
    to_drop = len(messages) - system_count - max(0, max_length - system_count)

    kept = []
    for m in messages:
        if m.role != Role.SYSTEM and to_drop > 0:
            to_drop -= 1
            continue
        kept.append(m)
    return kept


class ConversationStore:
    """Ordered, in-memory message log owned by one session."""

    def __init__(self, seed: list[Message] | None = None):
        self._seed: tuple[Message, ...] = tuple(seed or ())
        self._messages: list[Message] = list(self._seed)

    def append(self, message: Message):
        """Add to the end. System messages may only extend the leading run."""
        if message.role == Role.SYSTEM and any(m.role != Role.SYSTEM for m in self._messages):
            raise ValueError("System messages must come before any user or model turn")
        self._messages.append(message)

    def truncate(self, max_length: int) -> int:
        """Apply the history bound in place. Returns how many messages were dropped."""
        before = len(self._messages)
        self._messages = truncate_messages(self._messages, max_length)
        dropped = before - len(self._messages)
        if dropped:
            logger.debug("Truncated conversation: dropped %d message(s), kept %d", dropped, len(self._messages))
        return dropped

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def reset(self):
        """Restore the initial seed (system messages only)."""
        self._messages = list(self._seed)

    @property
    def seed(self) -> tuple[Message, ...]:
        return self._seed

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))
