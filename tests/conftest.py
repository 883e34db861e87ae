"""
Shared test fakes.

    ManualClock: settable monotonic clock for the pool and SilentOutput
    ManualTimers: call_later replacement driven by a ManualClock
    ScriptedEndpoint: SpeechEndpoint returning scripted results per call
    make_pcm: silent PCM16 buffer of a given sample count
    read_wav: WAV bytes -> (float32 samples, sample rate)
"""
from __future__ import annotations

import asyncio
import io
import os
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import pytest
import soundfile as sf

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))
os.environ.setdefault("TTS_STREAM_NO_COLOR", "1")

from tts_stream.tts.endpoint import SpeechEndpoint, SynthesisRequest  # noqa: E402


def make_pcm(samples: int = 2400, value: int = 0) -> bytes:
    """Mono PCM16 buffer; 2400 samples is 0.1s at 24 kHz."""
    return np.full(samples, value, dtype="<i2").tobytes()


def read_wav(wav_bytes: bytes) -> Tuple[np.ndarray, int]:
    """Decode an exported WAV back to float32 samples for assertions."""
    samples, sr = sf.read(io.BytesIO(wav_bytes), dtype="float32")
    return np.asarray(samples, dtype=np.float32), int(sr)


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class _TimerHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """
    ``call_later`` stand-in: timers fire only from ``run_due()``.

    Delays are measured on ``clock``, which is usually the same
    ManualClock that drives the SilentOutput.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.handles: List[_TimerHandle] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> _TimerHandle:
        handle = _TimerHandle(self.clock() + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[_TimerHandle]:
        return [h for h in self.handles if not h.cancelled]

    def run_due(self) -> int:
        """Fire every live timer that is due, in due order."""
        fired = 0
        for handle in sorted(self.pending, key=lambda h: h.due):
            if handle.due <= self.clock() and not handle.cancelled:
                handle.cancelled = True
                handle.callback()
                fired += 1
        return fired

    def advance(self, seconds: float) -> int:
        self.clock.advance(seconds)
        return self.run_due()


class ScriptedEndpoint(SpeechEndpoint):
    """
    Endpoint whose n-th call returns (or raises) ``script[n]``.

    Calls past the end of the script return ``default``. Each call is
    recorded as ``(text, credential)``; when ``log`` is given, a
    ``("request", text)`` entry is appended there too so tests can check
    ordering against status updates.
    """

    name = "scripted"

    def __init__(
        self,
        script: Optional[List[Any]] = None,
        default: Optional[bytes] = None,
        delay_s: float = 0.0,
        log: Optional[List[Tuple[str, Any]]] = None,
    ):
        self.script = list(script or [])
        self.default = default if default is not None else make_pcm()
        self.delay_s = delay_s
        self.log = log
        self.calls: List[Tuple[str, str]] = []
        self.requests: List[SynthesisRequest] = []
        self.closed = False

    async def synthesize(self, request: SynthesisRequest, credential: str) -> bytes:
        self.calls.append((request.text, credential))
        self.requests.append(request)
        if self.log is not None:
            self.log.append(("request", request.text))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        index = len(self.calls) - 1
        result = self.script[index] if index < len(self.script) else self.default
        if isinstance(result, BaseException):
            raise result
        return result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def manual_timers(manual_clock) -> ManualTimers:
    return ManualTimers(manual_clock)
