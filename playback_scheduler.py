"""
PlaybackScheduler: gapless, ordered playback of independently arriving chunks.

Each inbound chunk is decoded and scheduled to start exactly where the
previous one ends (or "now" if that moment has passed), so arrival jitter
never produces overlaps or reordering. interrupt() stops everything that is
queued or playing and pulls the cursor back to the output clock.

The output sink is anything with:
    now() -> float                                  output clock, seconds
    play_at(samples, start_at, on_ended) -> handle  handle.stop() is idempotent
"""

import logging

import frame_codec
from config import CHANNELS, OUTPUT_SAMPLE_RATE
from frame_codec import DecodeError

logger = logging.getLogger(__name__)


class PlaybackScheduler:
    """Time-cursor scheduler over an output sink."""

    def __init__(self, sink, sample_rate: int = OUTPUT_SAMPLE_RATE, channels: int = CHANNELS):
        self._sink = sink
        self._sample_rate = sample_rate
        self._channels = channels
        self._cursor = 0.0
        self._live: set = set()
        self._chunks_scheduled = 0

    @property
    def cursor(self) -> float:
        """Scheduled end time of the last enqueued chunk."""
        return self._cursor

    @property
    def live_count(self) -> int:
        return len(self._live)

    @property
    def is_playing(self) -> bool:
        return bool(self._live)

    def enqueue(self, chunk):
        """Decode a chunk and schedule it back-to-back after the previous one.

        Returns the playback handle, or None if the chunk was skipped.
        """
        try:
            samples = frame_codec.decode(chunk, self._sample_rate, self._channels)
        except DecodeError as e:
            logger.warning("Skipping undecodable audio chunk: %s", e)
            return None
        if len(samples) == 0:
            return None

        start_at = max(self._cursor, self._sink.now())
        handle = self._sink.play_at(samples, start_at, self._on_ended)
        self._cursor = start_at + frame_codec.duration(samples, self._sample_rate)
        self._live.add(handle)

        self._chunks_scheduled += 1
        if self._chunks_scheduled % 100 == 0:
            logger.debug("Scheduled %d chunks, cursor at %.2fs", self._chunks_scheduled, self._cursor)
        return handle

    def _on_ended(self, handle):
        """Natural end of a chunk: drop it from the live set."""
        self._live.discard(handle)

    def interrupt(self):
        """Stop all live chunks and restart the cursor at the output clock."""
        if self._live:
            logger.info("Interrupting playback (%d live chunks)", len(self._live))
        for handle in list(self._live):
            handle.stop()
        self._live.clear()
        self._cursor = self._sink.now()

    def close(self):
        """Release everything still scheduled. Safe to call repeatedly."""
        for handle in list(self._live):
            handle.stop()
        self._live.clear()
