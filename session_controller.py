#!/usr/bin/env python3
"""
Live voice session: mic -> Gemini Live -> scheduled playback, with transcripts
assembled per turn and user utterances screened by the safety monitor.

    capture (Microphone) -> frame_codec.make_blob -> transport.send_media
    transport -> AudioChunk          -> PlaybackScheduler.enqueue
              -> TranscriptFragment  -> TranscriptAssembler.append_*
              -> TurnComplete        -> TranscriptAssembler.complete_turn
              -> Interrupted         -> PlaybackScheduler.interrupt + interrupt_model
    finalized Message -> ConversationStore (+ SafetyMonitor for user text)

All handlers run on the asyncio loop. Each connect() builds a fresh
_Connection holding every resource of that attempt; disconnect() releases it.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable

import frame_codec
from audio_io import Microphone, OutputSink
from config import INPUT_SAMPLE_RATE, ConfigurationError, require_api_key
from conversation_store import ConversationStore
from live_messages import InboundMessage, MessageKind, Speaker
from live_transport import GeminiLiveTransport, SessionConfig, TransportError
from playback_scheduler import PlaybackScheduler
from safety_monitor import FlaggedEvent, SafetyMonitor
from transcript_assembler import Message, Role, TranscriptAssembler

logger = logging.getLogger(__name__)

MIC_DENIED_MESSAGE = (
    "Microphone access denied. Please check that a microphone is connected "
    "and that this application is allowed to use it."
)
AUDIO_UNAVAILABLE_MESSAGE = (
    "Audio support is not installed. Install the 'audio' extra (pyaudio) and try again."
)
CONNECTION_ERROR_MESSAGE = "Connection error. The service might be temporarily unavailable."


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class _Connection:
    """Resources owned by a single connect attempt."""

    def __init__(self):
        self.sink = None
        self.mic = None
        self.transport = None
        self.scheduler: PlaybackScheduler | None = None
        self.assembler: TranscriptAssembler | None = None
        self.send_tasks: set[asyncio.Task] = set()
        self.released = False


class SessionController:
    """Connection lifecycle and event routing for one voice companion.

    Args:
        store: ConversationStore (already loaded)
        api_key: Gemini API key (default: looked up via config.get_api_key)
        monitor: SafetyMonitor for user utterances
        transport_factory: callable(api_key) -> transport
        sink_factory: callable() -> output sink
        mic_factory: callable(on_frame) -> microphone
    """

    def __init__(self, store: ConversationStore, api_key=None, monitor=None,
                 transport_factory=None, sink_factory=None, mic_factory=None):
        self._store = store
        self._api_key = api_key
        self._monitor = monitor or SafetyMonitor()
        self._transport_factory = transport_factory or GeminiLiveTransport
        self._sink_factory = sink_factory or OutputSink
        self._mic_factory = mic_factory or Microphone

        self._state = SessionState.DISCONNECTED
        self._error: str | None = None
        self._conn: _Connection | None = None
        self._pending: set[asyncio.Future] = set()

        self._callbacks: dict[str, list[Callable]] = {
            'state_changed': [],
            'message': [],
            'flagged': [],
            'error': [],
            'history_cleared': [],
        }

    # ── Observable state ───────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> str | None:
        """User-facing description of the last failure, if any."""
        return self._error

    @property
    def messages(self) -> list[Message]:
        return self._store.messages

    @property
    def flagged_events(self) -> list[FlaggedEvent]:
        return self._store.flagged_events

    @property
    def voice(self) -> str:
        return self._store.voice

    @property
    def volume(self) -> float:
        """Current output level (0..1), 0 when not connected."""
        conn = self._conn
        if conn is None or conn.sink is None:
            return 0.0
        return getattr(conn.sink, 'level', 0.0)

    @property
    def is_playing(self) -> bool:
        conn = self._conn
        return bool(conn and conn.scheduler and conn.scheduler.is_playing)

    def set_voice(self, voice: str):
        """Select the voice used from the next connect() on."""
        self._store.set_voice(voice)
        logger.info("Voice set to %s", voice)

    def clear_history(self):
        """Empty the message and flagged-event logs, in memory and on disk."""
        self._store.clear_history()
        self._fire('history_cleared')

    # ── Event system ───────────────────────────────────────────────

    def on(self, event: str, callback: Callable) -> None:
        """Register a callback.

        Valid events: state_changed(SessionState), message(Message),
        flagged(FlaggedEvent), error(str), history_cleared()

        Raises:
            ValueError: If event name is not recognized
        """
        if event not in self._callbacks:
            raise ValueError(f"Unknown event: {event}. Valid events: {list(self._callbacks.keys())}")
        self._callbacks[event].append(callback)

    def _fire(self, event: str, *args) -> None:
        """Call every callback for an event; a failing callback is only logged."""
        for callback in self._callbacks.get(event, []):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    self._schedule(result, f"{event} callback")
            except Exception as e:
                logger.error("Session callback error (%s): %s", event, e)

    def _set_state(self, state: SessionState):
        if state is self._state:
            return
        logger.info("Session state: %s -> %s", self._state.value, state.value)
        self._state = state
        self._fire('state_changed', state)

    def _set_error(self, message: str | None):
        self._error = message
        if message:
            self._fire('error', message)

    def _schedule(self, awaitable, what: str):
        """Run an awaitable in the background, keeping a reference until done."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop (sync teardown); nothing can await it
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.debug("No event loop for %s, skipped", what)
            return
        future = asyncio.ensure_future(awaitable, loop=loop)

        def _done(fut):
            self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.warning("%s failed: %s", what, fut.exception())

        self._pending.add(future)
        future.add_done_callback(_done)

    # ── Connect / disconnect ───────────────────────────────────────

    async def connect(self):
        """Open audio devices and the live session.

        A call while already connecting or connected is ignored.

        Raises:
            ConfigurationError: no API key; state stays DISCONNECTED
            PermissionError: audio device unavailable or audio libraries
                missing; state back to DISCONNECTED
            TransportError: session could not be opened; state ERROR
        """
        if self._state in (SessionState.CONNECTING, SessionState.CONNECTED):
            logger.warning("connect() ignored: session is already %s", self._state.value)
            return

        self._set_error(None)
        try:
            api_key = require_api_key(self._api_key)
        except ConfigurationError as e:
            logger.error("Cannot connect: %s", e)
            self._set_error(str(e))
            self._set_state(SessionState.DISCONNECTED)
            raise

        conn = _Connection()
        self._conn = conn
        self._set_state(SessionState.CONNECTING)

        try:
            opened = await self._open_connection(conn, api_key)
        except asyncio.CancelledError:
            self._release(conn)
            if self._conn is conn:
                self._conn = None
                logger.info("Connect attempt cancelled")
                self._set_state(SessionState.DISCONNECTED)
            raise
        except (PermissionError, ImportError) as e:
            self._release(conn)
            if self._conn is not conn:
                return
            self._conn = None
            logger.error("Audio device unavailable: %s", e)
            if isinstance(e, ImportError):
                self._set_error(AUDIO_UNAVAILABLE_MESSAGE)
                self._set_state(SessionState.DISCONNECTED)
                raise PermissionError(f"Audio support unavailable: {e}") from e
            self._set_error(MIC_DENIED_MESSAGE)
            self._set_state(SessionState.DISCONNECTED)
            raise
        except Exception as e:
            self._release(conn)
            if self._conn is not conn:
                return
            self._conn = None
            logger.error("Failed to connect: %s", e)
            self._set_error(str(e) or CONNECTION_ERROR_MESSAGE)
            self._set_state(SessionState.ERROR)
            if isinstance(e, TransportError):
                raise
            raise TransportError(str(e)) from e

        if not opened:
            return
        self._set_state(SessionState.CONNECTED)
        logger.info("Connected with voice %s", self._store.voice)

    async def _open_connection(self, conn: _Connection, api_key) -> bool:
        """Acquire output, capture and transport for conn.

        Returns False if a disconnect() superseded this attempt midway; its
        resources are released in that case.
        """
        def superseded():
            if self._conn is conn:
                return False
            logger.info("Connect attempt abandoned")
            self._release(conn)
            return True

        conn.sink = self._sink_factory()
        await conn.sink.open()
        if superseded():
            return False
        conn.scheduler = PlaybackScheduler(conn.sink)
        conn.assembler = TranscriptAssembler(on_message=self._on_final_message)

        conn.mic = self._mic_factory(lambda samples: self._on_capture_frame(conn, samples))
        await conn.mic.open()
        if superseded():
            return False

        conn.transport = self._transport_factory(api_key)
        await conn.transport.open(
            SessionConfig(voice=self._store.voice),
            on_message=lambda message: self._on_inbound(conn, message),
            on_error=lambda error: self._on_transport_error(conn, error),
            on_close=lambda: self._on_transport_closed(conn),
        )
        return not superseded()

    def disconnect(self):
        """Tear down whatever is open and go to DISCONNECTED. Never raises."""
        conn, self._conn = self._conn, None
        if conn is not None:
            self._release(conn)
        self._set_state(SessionState.DISCONNECTED)

    async def shutdown(self):
        """disconnect() and wait for background closes to finish."""
        self.disconnect()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _release(self, conn: _Connection):
        """Release every resource of conn, tolerating missing or closed ones.

        References are kept so that a second release after an in-flight
        open() completes closes what that open() acquired.
        """
        if conn.mic is not None:
            self._safely("microphone", conn.mic.close)

        for task in list(conn.send_tasks):
            task.cancel()
        conn.send_tasks.clear()

        if conn.scheduler is not None:
            self._safely("playback", conn.scheduler.close)
        if conn.assembler is not None:
            conn.assembler.reset()

        close = getattr(conn.transport, 'close', None)
        if callable(close):
            try:
                result = close()
            except Exception as e:
                logger.warning("Transport close failed: %s", e)
            else:
                if inspect.isawaitable(result):
                    self._schedule(result, "transport close")

        if conn.sink is not None:
            self._safely("audio output", conn.sink.close)

        if not conn.released:
            conn.released = True
            logger.debug("Connection resources released")

    @staticmethod
    def _safely(name, fn):
        try:
            fn()
        except Exception as e:
            logger.warning("Failed to release %s: %s", name, e)

    # ── Outbound audio ─────────────────────────────────────────────

    def _on_capture_frame(self, conn: _Connection, samples):
        """Encode one capture buffer and send it without waiting."""
        if self._conn is not conn or self._state is not SessionState.CONNECTED:
            return
        transport = conn.transport
        if transport is None:
            return
        blob = frame_codec.make_blob(samples, INPUT_SAMPLE_RATE)
        task = asyncio.ensure_future(transport.send_media(blob))
        conn.send_tasks.add(task)
        task.add_done_callback(lambda t: self._on_send_done(conn, t))

    @staticmethod
    def _on_send_done(conn: _Connection, task):
        conn.send_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Audio send failed: %s", task.exception())

    # ── Inbound dispatch ───────────────────────────────────────────

    def _on_inbound(self, conn: _Connection, message: InboundMessage):
        if self._conn is not conn or self._state is not SessionState.CONNECTED:
            return

        kind = message.kind
        if kind is MessageKind.AUDIO_CHUNK:
            conn.scheduler.enqueue(message.data)
        elif kind is MessageKind.TRANSCRIPT_FRAGMENT:
            if message.speaker is Speaker.USER:
                conn.assembler.append_user_fragment(message.data)
            else:
                conn.assembler.append_model_fragment(message.data)
        elif kind is MessageKind.TURN_COMPLETE:
            conn.assembler.complete_turn()
        elif kind is MessageKind.INTERRUPTED:
            logger.info("Barge-in: stopping model playback")
            conn.scheduler.interrupt()
            conn.assembler.interrupt_model()
        elif kind is MessageKind.ERROR:
            self._on_transport_error(conn, TransportError(message.data))

    def _on_final_message(self, message: Message):
        """Persist a finalized message; screen user text for flagged keywords."""
        logger.debug("%s: %s", message.role.value, message.text)
        self._store.append_message(message)
        self._fire('message', message)

        if message.role is not Role.USER:
            return
        event = self._monitor.scan(message.text)
        if event is None:
            return
        logger.warning("Flagged %s-severity keyword %r", event.severity.value, event.keyword)
        self._store.add_flagged_event(event)
        self._fire('flagged', event)

    # ── Transport failures ─────────────────────────────────────────

    def _on_transport_error(self, conn: _Connection, error):
        if self._conn is not conn:
            return
        logger.error("Live session error: %s", error)
        self._conn = None
        self._release(conn)
        self._set_error(CONNECTION_ERROR_MESSAGE)
        self._set_state(SessionState.ERROR)

    def _on_transport_closed(self, conn: _Connection):
        if self._conn is not conn:
            return
        logger.info("Live session closed by server")
        self._conn = None
        self._release(conn)
        self._set_state(SessionState.DISCONNECTED)
