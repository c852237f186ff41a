#!/usr/bin/env python3
"""
Gemini Live API transport over a raw websocket.

Opens a bidirectional session, sends the setup message (voice, persona,
audio output, transcription in both directions), waits for setupComplete,
then streams microphone blobs out and dispatches parsed server messages to
the session's handlers.
"""

import asyncio
import json
import logging
from dataclasses import dataclass

import websockets

from config import LIVE_URL, MODEL_NAME, SYSTEM_INSTRUCTION, DEFAULT_VOICE_NAME
from live_messages import parse_server_message

logger = logging.getLogger(__name__)

SETUP_TIMEOUT = 15.0  # seconds to wait for setupComplete


class TransportError(Exception):
    """The live session failed to open or broke mid-session."""


@dataclass
class SessionConfig:
    voice: str = DEFAULT_VOICE_NAME
    system_instruction: str = SYSTEM_INSTRUCTION
    response_modality: str = "AUDIO"
    transcribe_input: bool = True
    transcribe_output: bool = True


def build_setup_message(config: SessionConfig, model: str = MODEL_NAME) -> dict:
    setup = {
        "model": f"models/{model}",
        "generationConfig": {
            "responseModalities": [config.response_modality],
            "speechConfig": {
                "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": config.voice}}
            },
        },
        "systemInstruction": {"parts": [{"text": config.system_instruction}]},
    }
    if config.transcribe_input:
        setup["inputAudioTranscription"] = {}
    if config.transcribe_output:
        setup["outputAudioTranscription"] = {}
    return {"setup": setup}


def _load(raw) -> dict:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    return json.loads(raw)


class GeminiLiveTransport:
    """One live session. Create a new instance per connection."""

    def __init__(self, api_key, model=MODEL_NAME, url=LIVE_URL):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.ws = None
        self._reader = None
        self._closing = False
        self._on_message = None
        self._on_error = None
        self._on_close = None
        self.frames_sent = 0

    async def open(self, config: SessionConfig, on_message, on_error=None, on_close=None):
        """Connect and complete session setup.

        Returns once the server acknowledges setup; inbound messages are
        delivered to on_message(InboundMessage) from then on.

        Raises:
            TransportError: connection, setup, or acknowledgement failed
        """
        self._on_message = on_message
        self._on_error = on_error or (lambda e: None)
        self._on_close = on_close or (lambda: None)

        try:
            self.ws = await websockets.connect(
                self.url,
                additional_headers={"x-goog-api-key": self.api_key},
                ping_interval=20,
                max_size=None,
            )
            await self.ws.send(json.dumps(build_setup_message(config, self.model)))
            await asyncio.wait_for(self._await_setup_complete(), timeout=SETUP_TIMEOUT)
        except TransportError:
            await self._abort()
            raise
        except asyncio.TimeoutError as e:
            await self._abort()
            raise TransportError("Timed out waiting for session setup") from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            await self._abort()
            raise TransportError(f"Could not open live session: {e}") from e

        logger.info("Live session opened (model=%s, voice=%s)", self.model, config.voice)
        self._reader = asyncio.create_task(self._read_loop(), name="maya-live-reader")

    async def _await_setup_complete(self):
        async for raw in self.ws:
            data = _load(raw)
            if "setupComplete" in data:
                return
            if "error" in data:
                raise TransportError(f"Setup rejected: {data['error']}")
            logger.debug("Ignoring pre-setup message: %s", list(data))
        raise TransportError("Connection closed during setup")

    async def _read_loop(self):
        """Dispatch inbound messages until the socket closes."""
        try:
            async for raw in self.ws:
                try:
                    data = _load(raw)
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    logger.warning("Dropping unparseable server message: %s", e)
                    continue
                for message in parse_server_message(data):
                    self._on_message(message)
        except websockets.exceptions.ConnectionClosedError as e:
            if not self._closing:
                logger.error("Live session dropped: %s", e)
                self._on_error(TransportError(f"Connection lost: {e}"))
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closing:
                logger.exception("Live session reader failed")
                self._on_error(TransportError(str(e)))
            return

        if not self._closing:
            logger.info("Live session closed by server")
            self._on_close()

    async def send_media(self, blob: dict):
        """Send one encoded audio blob as realtime input."""
        if self.ws is None or self._closing:
            return
        await self.ws.send(json.dumps({"realtimeInput": {"mediaChunks": [blob]}}))
        self.frames_sent += 1
        if self.frames_sent % 200 == 0:
            logger.debug("Sent %d audio frames", self.frames_sent)

    async def _abort(self):
        self._closing = True
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug("Close during abort failed: %s", e)
            self.ws = None

    async def close(self):
        """Close the session. Idempotent."""
        self._closing = True
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
        if self.ws is not None:
            ws, self.ws = self.ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Websocket close error: %s", e)
        logger.info("Live session closed (%d frames sent)", self.frames_sent)
