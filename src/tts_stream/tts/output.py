"""
Audio Outputs: the clock and sink behind the playback scheduler.

An AudioOutput owns a monotonic audio clock (seconds) and plays sample
buffers bound to absolute start times on that clock. The clock halts
while the output is suspended, so scheduled audio keeps its relative
placement across a pause.

Implementations:
    - SilentOutput: Virtual clock, no sound. Headless runs, the HTTP
      service and tests.
    - SoundDeviceOutput (tts/output_device.py): Real speaker output via
      sounddevice; imported lazily because it needs PortAudio.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np


@dataclass
class Binding:
    """Samples bound to start at ``start_time`` on the output clock."""
    segment_id: str
    start_time: float
    samples: np.ndarray
    sample_rate: int

    @property
    def duration_s(self) -> float:
        return len(self.samples) / float(self.sample_rate)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration_s


class AudioOutput:
    """Abstract audio output with a suspendable clock."""

    def __init__(self, sample_rate: int = 24000):
        self.sample_rate = sample_rate

    def now(self) -> float:
        """Current audio clock time in seconds."""
        raise NotImplementedError

    @property
    def suspended(self) -> bool:
        raise NotImplementedError

    def suspend(self) -> None:
        """Halt the clock and all sound."""
        raise NotImplementedError

    def resume(self) -> None:
        """Restart the clock where it stopped."""
        raise NotImplementedError

    def play_at(self, segment_id: str, samples: np.ndarray, start_time: float) -> None:
        """Bind ``samples`` to begin at ``start_time``."""
        raise NotImplementedError

    def cancel_all(self) -> None:
        """Drop every binding, including one currently sounding."""
        raise NotImplementedError

    def close(self) -> None:
        return None


class SilentOutput(AudioOutput):
    """
    Output without a sound device.

    The clock is ``clock()`` minus time spent suspended. Bindings are
    recorded so callers can inspect what would have played, and when.
    """

    def __init__(self, sample_rate: int = 24000, clock: Callable[[], float] = time.monotonic):
        super().__init__(sample_rate)
        self._clock = clock
        self._origin = clock()
        self._suspended_at: Optional[float] = None
        self._suspended_total = 0.0
        self.bindings: List[Binding] = []

    def now(self) -> float:
        ref = self._suspended_at if self._suspended_at is not None else self._clock()
        return ref - self._origin - self._suspended_total

    @property
    def suspended(self) -> bool:
        return self._suspended_at is not None

    def suspend(self) -> None:
        if self._suspended_at is None:
            self._suspended_at = self._clock()

    def resume(self) -> None:
        if self._suspended_at is not None:
            self._suspended_total += self._clock() - self._suspended_at
            self._suspended_at = None

    def play_at(self, segment_id: str, samples: np.ndarray, start_time: float) -> None:
        self.bindings.append(Binding(segment_id, start_time, samples, self.sample_rate))

    def cancel_all(self) -> None:
        self.bindings.clear()
