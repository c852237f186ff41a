"""
Audio devices for the live session.

Microphone: PulseAudio capture via pasimple in a daemon thread. Float32
buffers are handed to the asyncio loop with call_soon_threadsafe.

OutputSink: PyAudio callback stream that mixes scheduled sounds against its
own sample clock. now() is the number of frames rendered so far divided by
the sample rate, so play_at() start times are exact to the sample.
"""

import asyncio
import logging
import threading

import numpy as np

from config import CAPTURE_FRAMES, CHANNELS, INPUT_SAMPLE_RATE, OUTPUT_SAMPLE_RATE

logger = logging.getLogger(__name__)

FRAMES_PER_BUFFER = 1024
BYTES_PER_FLOAT = 4


class Microphone:
    """Float32 mono capture from the default (or named) PulseAudio source.

    Args:
        on_frame: called on the event loop with each numpy float32 buffer
        sample_rate: capture rate in Hz
        frames: samples per buffer
        device_name: PulseAudio source name (None = default mic)
    """

    def __init__(self, on_frame, sample_rate=INPUT_SAMPLE_RATE,
                 frames=CAPTURE_FRAMES, device_name=None):
        self._on_frame = on_frame
        self._sample_rate = sample_rate
        self._frames = frames
        self._device_name = device_name
        self._pa = None
        self._thread = None
        self._stop_event = threading.Event()
        self._loop = None
        self.buffers_read = 0

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def _open_stream(self):
        import pasimple
        try:
            return pasimple.PaSimple(
                pasimple.PA_STREAM_RECORD,
                pasimple.PA_SAMPLE_FLOAT32LE,
                CHANNELS, self._sample_rate,
                app_name='maya-live',
                device_name=self._device_name,
            )
        except Exception as e:
            raise PermissionError(f"Microphone access denied: {e}") from e

    async def open(self):
        """Open the capture stream and start the reader thread.

        Raises:
            PermissionError: the capture device could not be opened
        """
        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        self._pa = await self._loop.run_in_executor(None, self._open_stream)
        self._thread = threading.Thread(target=self._capture_thread, daemon=True,
                                        name="maya-capture")
        self._thread.start()
        logger.info("Microphone opened (%dHz)", self._sample_rate)

    def _capture_thread(self):
        """Read buffers until stopped, then release the stream."""
        pa = self._pa
        try:
            while not self._stop_event.is_set():
                try:
                    data = pa.read(self._frames * BYTES_PER_FLOAT * CHANNELS)
                except Exception as e:
                    if not self._stop_event.is_set():
                        logger.error("Capture read failed: %s", e)
                    break
                samples = np.frombuffer(data, dtype='<f4')
                try:
                    self._loop.call_soon_threadsafe(self._deliver, samples)
                except RuntimeError:
                    break  # loop closed
        finally:
            try:
                pa.close()
            except Exception as e:
                logger.debug("Capture close error: %s", e)

    def _deliver(self, samples):
        if self._stop_event.is_set():
            return
        self.buffers_read += 1
        self._on_frame(samples)

    def close(self):
        """Stop capture. Safe to call when never opened or already closed."""
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=1.0)
            logger.info("Microphone closed (%d buffers)", self.buffers_read)
        self._pa = None


class ScheduledSound:
    """Handle for one sound scheduled on an OutputSink."""

    def __init__(self, sink, samples, start_frame, on_ended=None):
        self._sink = sink
        self.samples = np.asarray(samples, dtype=np.float32).ravel()
        self.start_frame = start_frame
        self.frames = len(self.samples) // sink.channels
        self._on_ended = on_ended
        self.stopped = False
        self.finished = False

    @property
    def end_frame(self):
        return self.start_frame + self.frames

    def stop(self):
        """Cancel playback. No end notification is sent for stopped sounds."""
        if self.stopped or self.finished:
            return
        self.stopped = True
        self._sink._cancel(self)

    def _finish(self):
        if self.stopped or self.finished:
            return
        self.finished = True
        if self._on_ended:
            self._on_ended(self)


class OutputSink:
    """PyAudio output with sample-accurate scheduling."""

    def __init__(self, sample_rate=OUTPUT_SAMPLE_RATE, channels=CHANNELS):
        self.sample_rate = sample_rate
        self.channels = channels
        self._lock = threading.Lock()
        self._sounds: list[ScheduledSound] = []
        self._frames_rendered = 0
        self._level = 0.0
        self._loop = None
        self._pyaudio = None
        self._pa = None
        self._stream = None

    @property
    def level(self) -> float:
        """RMS of the most recently rendered buffer, 0..1."""
        return self._level

    async def open(self):
        """Open the output device.

        Raises:
            PermissionError: no usable output device
        """
        import pyaudio

        self._loop = asyncio.get_running_loop()
        self._pyaudio = pyaudio
        try:
            self._pa = pyaudio.PyAudio()
            self._stream = self._pa.open(
                format=pyaudio.paFloat32,
                channels=self.channels,
                rate=self.sample_rate,
                output=True,
                frames_per_buffer=FRAMES_PER_BUFFER,
                stream_callback=self._callback,
            )
        except Exception as e:
            self.close()
            raise PermissionError(f"Audio output unavailable: {e}") from e
        logger.info("Audio output opened (%dHz)", self.sample_rate)

    def now(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    def play_at(self, samples, start_at: float, on_ended=None) -> ScheduledSound:
        sound = ScheduledSound(self, samples, int(round(start_at * self.sample_rate)), on_ended)
        with self._lock:
            self._sounds.append(sound)
        return sound

    def _cancel(self, sound):
        with self._lock:
            if sound in self._sounds:
                self._sounds.remove(sound)

    def render(self, frame_count: int) -> np.ndarray:
        """Mix the next frame_count frames and advance the clock."""
        ch = self.channels
        out = np.zeros(frame_count * ch, dtype=np.float32)
        with self._lock:
            t0 = self._frames_rendered
            t1 = t0 + frame_count
            finished = []
            for sound in self._sounds:
                if sound.start_frame >= t1:
                    continue
                src = max(0, t0 - sound.start_frame)
                dst = max(0, sound.start_frame - t0)
                n = min(frame_count - dst, sound.frames - src)
                if n > 0:
                    out[dst * ch:(dst + n) * ch] += sound.samples[src * ch:(src + n) * ch]
                if sound.end_frame <= t1:
                    finished.append(sound)
            for sound in finished:
                self._sounds.remove(sound)
            self._frames_rendered = t1
            self._level = float(min(1.0, np.sqrt(np.mean(out ** 2)))) if len(out) else 0.0

        for sound in finished:
            if self._loop is None:
                sound._finish()
                continue
            try:
                self._loop.call_soon_threadsafe(sound._finish)
            except RuntimeError:
                pass  # loop already closed during shutdown
        return np.clip(out, -1.0, 1.0)

    def _callback(self, in_data, frame_count, time_info, status):
        out = self.render(frame_count)
        return (out.tobytes(), self._pyaudio.paContinue)

    def close(self):
        """Stop the stream and drop all scheduled sounds. Idempotent."""
        with self._lock:
            self._sounds.clear()
            self._level = 0.0
        stream, self._stream = self._stream, None
        pa, self._pa = self._pa, None
        if stream is not None:
            try:
                stream.stop_stream()
                stream.close()
            except Exception as e:
                logger.debug("Output stream close error: %s", e)
        if pa is not None:
            pa.terminate()
            logger.info("Audio output closed")
