"""
Persistent conversation state: message log, flagged-event log, voice preference.

JsonFileStore is a small key-value store backed by one JSON file. Each write
goes to a temp file that replaces the original with os.replace(), so readers
never see a half-written file and a multi-key removal lands in one step.

ConversationStore keeps the in-memory logs (authoritative for the session)
and mirrors every mutation to the key-value store. Storage failures are
logged and never interrupt the conversation.
"""

import json
import logging
import os
import tempfile
from pathlib import Path

from config import AVAILABLE_VOICES, DEFAULT_VOICE_NAME, STORE_FILE
from safety_monitor import FlaggedEvent
from transcript_assembler import Message

logger = logging.getLogger(__name__)

MESSAGES_KEY = "maya-messages"
EVENTS_KEY = "maya-events"
VOICE_KEY = "maya-voice"


class StorageError(Exception):
    """Reading or writing persisted state failed."""


class JsonFileStore:
    """String key-value store persisted as a single JSON object."""

    def __init__(self, path: Path = STORE_FILE):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"{self._path} does not hold a JSON object")
        return data

    def _write(self, data: dict):
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write {self._path}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str):
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, *keys: str):
        """Remove one or more keys in a single write."""
        data = self._read()
        if not any(k in data for k in keys):
            return
        for key in keys:
            data.pop(key, None)
        self._write(data)

    def keys(self) -> list[str]:
        return list(self._read().keys())


class ConversationStore:
    """In-memory conversation logs mirrored to a key-value store.

    messages are kept in arrival order; flagged_events most recent first.
    """

    def __init__(self, kv=None):
        self._kv = kv if kv is not None else JsonFileStore()
        self._messages: list[Message] = []
        self._events: list[FlaggedEvent] = []
        self._voice = DEFAULT_VOICE_NAME

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def flagged_events(self) -> list[FlaggedEvent]:
        return list(self._events)

    @property
    def voice(self) -> str:
        return self._voice

    # ── Loading ──────────────────────────────────────────────────

    def load(self):
        """Read all persisted state once at startup.

        Unreadable entries are logged and skipped; the store starts empty
        for whatever could not be loaded.
        """
        self._messages = self._load_list(MESSAGES_KEY, Message.from_dict)
        self._events = self._load_list(EVENTS_KEY, FlaggedEvent.from_dict)

        try:
            voice = self._kv.get(VOICE_KEY)
        except StorageError as e:
            logger.error("Failed to load voice preference: %s", e)
            voice = None
        if voice and voice not in AVAILABLE_VOICES:
            logger.warning("Unknown saved voice %r, using %s", voice, DEFAULT_VOICE_NAME)
            voice = None
        self._voice = voice or DEFAULT_VOICE_NAME

        logger.info("Loaded %d messages, %d flagged events, voice %s",
                    len(self._messages), len(self._events), self._voice)

    def _load_list(self, key, from_dict):
        try:
            raw = self._kv.get(key)
            if not raw:
                return []
            return [from_dict(item) for item in json.loads(raw)]
        except (StorageError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to load %s: %s", key, e)
            return []

    # ── Mutations ────────────────────────────────────────────────

    def _persist(self, key: str, value: str):
        try:
            self._kv.set(key, value)
        except StorageError as e:
            logger.error("Failed to persist %s: %s", key, e)

    def append_message(self, message: Message):
        self._messages.append(message)
        self._persist(MESSAGES_KEY, json.dumps([m.to_dict() for m in self._messages]))

    def add_flagged_event(self, event: FlaggedEvent):
        self._events.insert(0, event)
        self._persist(EVENTS_KEY, json.dumps([e.to_dict() for e in self._events]))

    def set_voice(self, voice: str):
        """Select the voice for future sessions.

        Raises:
            ValueError: voice is not in the catalog
        """
        if voice not in AVAILABLE_VOICES:
            raise ValueError(f"Unknown voice: {voice}. Valid voices: {list(AVAILABLE_VOICES)}")
        self._voice = voice
        self._persist(VOICE_KEY, voice)

    def clear_history(self):
        """Empty both logs and remove their persisted entries together."""
        self._messages = []
        self._events = []
        try:
            self._kv.remove(MESSAGES_KEY, EVENTS_KEY)
        except StorageError as e:
            logger.error("Failed to clear persisted history: %s", e)
        logger.info("Conversation history cleared")
