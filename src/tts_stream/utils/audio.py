"""
Audio Conversion Utilities.

The synthesis endpoint returns raw little-endian PCM 16-bit mono samples
(24 kHz). Internally:

    - the pipeline keeps the raw PCM bytes per segment for WAV export,
    - the playback scheduler works on float32 arrays in [-1, 1).

Key Functions:
    pcm16_to_float32: Raw PCM bytes -> float32 samples
    pcm16_duration_s: Duration of a PCM buffer without decoding it
    wav_bytes_from_pcm16: Raw PCM bytes -> WAV container bytes

Dependencies:
    - numpy: Sample conversion
    - soundfile: WAV encoding (libsndfile)
"""
from __future__ import annotations

import io
from typing import Dict, Iterable, Tuple

import numpy as np
import soundfile as sf

from tts_stream.core.logging import get_logger, verbose
from tts_stream.utils.timeit import timeit

_LOG = get_logger("tts-stream.audio")

# Bytes per sample for PCM 16-bit
PCM16_WIDTH = 2


def pcm16_to_float32(pcm: bytes) -> np.ndarray:
    """
    Decode little-endian PCM16 bytes into float32 samples.

    Samples are scaled by 1/32768 so the result lies in [-1.0, 1.0).

    Raises:
        ValueError: If the buffer length is not a whole number of samples.
    """
    if len(pcm) % PCM16_WIDTH:
        raise ValueError(f"PCM16 buffer has odd length {len(pcm)}")
    ints = np.frombuffer(pcm, dtype="<i2")
    return ints.astype(np.float32) / 32768.0


def pcm16_duration_s(pcm: bytes, sample_rate: int) -> float:
    """Duration in seconds of a mono PCM16 buffer."""
    return (len(pcm) // PCM16_WIDTH) / float(sample_rate)


def wav_bytes_from_pcm16(chunks: Iterable[bytes], sample_rate: int) -> Tuple[bytes, Dict[str, float]]:
    """
    Wrap concatenated PCM16 chunks in a mono 16-bit WAV container.

    Chunks are joined in iteration order; callers pass them in segment
    order.

    Returns:
        Tuple of (wav_bytes, timing_dict) with a ``wav_encode`` timing.
    """
    timings: Dict[str, float] = {}

    with timeit("wav_encode") as t:
        pcm = b"".join(chunks)
        samples = np.frombuffer(pcm, dtype="<i2")
        buf = io.BytesIO()
        sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
        out = buf.getvalue()

    timings["wav_encode"] = t.seconds
    verbose(
        _LOG,
        "wav_encoded",
        bytes=len(out),
        sr=sample_rate,
        duration_s=round(pcm16_duration_s(pcm, sample_rate), 3),
        seconds=round(timings["wav_encode"], 4),
    )
    return out, timings
