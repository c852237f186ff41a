"""Turn-based transcript assembly for the live session.

Provides:
- Role: speaker of a finalized message
- Message: frozen dataclass for one finalized utterance
- TranscriptAssembler: per-turn user/model accumulators that commit on turn complete

Partial transcription fragments are noisy and may arrive interleaved with
audio in any order, so nothing is committed until the turn-complete signal.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    """A finalized utterance in the conversation log."""
    role: Role
    text: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            role=Role(data["role"]),
            text=data["text"],
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class TranscriptAssembler:
    """Accumulates streaming transcript fragments and finalizes them per turn.

    Args:
        on_message: callback(Message) fired for each finalized message
        clock: returns the timestamp for new messages (default: UTC now)
    """

    def __init__(self, on_message: Callable[[Message], None] | None = None,
                 clock: Callable[[], datetime] = utc_now):
        self._on_message = on_message
        self._clock = clock
        self._user = ""
        self._model = ""

    @property
    def is_idle(self) -> bool:
        """True when neither side holds any pending text."""
        return not self._user and not self._model

    def append_user_fragment(self, text: str):
        self._user += text

    def append_model_fragment(self, text: str):
        self._model += text

    def complete_turn(self) -> list[Message]:
        """Commit both buffers (user first) and clear them.

        Sides whose text is blank after trimming produce no message.
        """
        messages = []
        for role, pending in ((Role.USER, self._user), (Role.MODEL, self._model)):
            text = pending.strip()
            if text:
                messages.append(Message(role=role, text=text, created_at=self._clock()))
        self._user = ""
        self._model = ""

        if self._on_message:
            for message in messages:
                self._on_message(message)
        return messages

    def interrupt_model(self):
        """Discard the unfinished model utterance after a barge-in."""
        self._model = ""

    def reset(self):
        """Drop everything pending without emitting."""
        self._user = ""
        self._model = ""
