"""Conversion between float capture samples and the wire audio format.

The wire format is 16-bit signed little-endian PCM, base64 encoded so it can
travel inside JSON messages. All functions are pure.
"""

import base64
import binascii

import numpy as np

# 16-bit full scale
PCM_SCALE = 32768.0
PCM_MIN = -32768
PCM_MAX = 32767


class DecodeError(ValueError):
    """An inbound audio frame could not be decoded."""


def encode(samples) -> str:
    """Quantize float samples in [-1, 1] to PCM16 and base64 encode them.

    Out-of-range input is clamped, never wrapped. NaN encodes as silence.
    """
    data = np.nan_to_num(np.asarray(samples, dtype=np.float64).ravel())
    data = np.clip(data, -1.0, 1.0) * PCM_SCALE
    pcm = np.clip(np.round(data), PCM_MIN, PCM_MAX).astype('<i2')
    return base64.b64encode(pcm.tobytes()).decode('ascii')


def decode(frame, sample_rate: int, channels: int = 1) -> np.ndarray:
    """Decode a base64 PCM16 frame to float32 samples in [-1, 1).

    Returns a 1-D array for mono audio and a (frames, channels) array
    otherwise.

    Raises:
        DecodeError: malformed base64, a partial sample frame, or bad format args
    """
    if sample_rate <= 0 or channels <= 0:
        raise DecodeError(f"Invalid audio format: {sample_rate}Hz, {channels} channel(s)")
    if isinstance(frame, str):
        try:
            frame = frame.encode('ascii')
        except UnicodeEncodeError as e:
            raise DecodeError("Audio frame contains non-ASCII characters") from e
    if not isinstance(frame, (bytes, bytearray)):
        raise DecodeError("Audio frame is not base64 text")

    try:
        raw = base64.b64decode(frame, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed base64 audio frame: {e}") from e

    frame_bytes = 2 * channels
    if len(raw) % frame_bytes:
        raise DecodeError(
            f"Audio frame is {len(raw)} bytes, not a multiple of {frame_bytes}"
        )

    samples = np.frombuffer(raw, dtype='<i2').astype(np.float32) / PCM_SCALE
    if channels > 1:
        samples = samples.reshape(-1, channels)
    return samples


def duration(samples: np.ndarray, sample_rate: int) -> float:
    """Seconds of audio covered by decoded samples."""
    return len(samples) / float(sample_rate)


def make_blob(samples, sample_rate: int) -> dict:
    """Build the outbound media payload for one capture buffer."""
    return {
        "data": encode(samples),
        "mimeType": f"audio/pcm;rate={sample_rate}",
    }
