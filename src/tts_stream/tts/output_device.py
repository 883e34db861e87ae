"""
Speaker output through sounddevice (PortAudio).

A callback-driven OutputStream renders bound segments by mixing every
binding that overlaps the block being rendered. The audio clock is the
number of frames rendered so far divided by the sample rate, so it
stops while the stream is stopped (suspended) and segment placement is
sample exact relative to it.

Requires the ``playback`` extra: ``pip install tts-stream[playback]``.
"""
from __future__ import annotations

import threading
from typing import List, Optional

import numpy as np
import sounddevice as sd

from tts_stream.core.logging import debug, get_logger, info
from tts_stream.tts.output import AudioOutput

_LOG = get_logger("tts-stream.output")


class _DeviceBinding:
    __slots__ = ("segment_id", "start_frame", "samples")

    def __init__(self, segment_id: str, start_frame: int, samples: np.ndarray):
        self.segment_id = segment_id
        self.start_frame = start_frame
        self.samples = samples

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)


class SoundDeviceOutput(AudioOutput):
    """
    Mono float32 speaker output with a frame-counting clock.

    Args:
        sample_rate: Stream sample rate in Hz.
        device: Optional sounddevice device index or name.
        block_ms: Preferred hardware block size in milliseconds.
    """

    def __init__(
        self,
        sample_rate: int = 24000,
        device: Optional[int | str] = None,
        block_ms: int = 20,
    ):
        super().__init__(sample_rate)
        self._lock = threading.Lock()
        self._frames = 0
        self._bindings: List[_DeviceBinding] = []
        self._suspended = True
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=1,
            dtype="float32",
            blocksize=max(1, int(sample_rate * block_ms / 1000)),
            device=device,
            callback=self._render,
        )
        info(_LOG, "output_device_opened", sr=sample_rate, device=device if device is not None else "default")

    def _render(self, outdata, frames, time_info, status) -> None:
        if status:
            debug(_LOG, "output_device_status", status=str(status))
        block = np.zeros(frames, dtype=np.float32)
        with self._lock:
            start = self._frames
            end = start + frames
            live: List[_DeviceBinding] = []
            for b in self._bindings:
                if b.end_frame <= start:
                    continue
                live.append(b)
                lo = max(start, b.start_frame)
                hi = min(end, b.end_frame)
                if lo < hi:
                    block[lo - start:hi - start] += b.samples[lo - b.start_frame:hi - b.start_frame]
            self._bindings = live
            self._frames = end
        np.clip(block, -1.0, 1.0, out=block)
        outdata[:frames, 0] = block

    def now(self) -> float:
        with self._lock:
            return self._frames / float(self.sample_rate)

    @property
    def suspended(self) -> bool:
        return self._suspended

    def suspend(self) -> None:
        if not self._suspended:
            self._stream.stop()
            self._suspended = True

    def resume(self) -> None:
        if self._suspended:
            self._stream.start()
            self._suspended = False

    def play_at(self, segment_id: str, samples: np.ndarray, start_time: float) -> None:
        start_frame = int(round(start_time * self.sample_rate))
        with self._lock:
            self._bindings.append(_DeviceBinding(segment_id, start_frame, np.asarray(samples, dtype=np.float32)))

    def cancel_all(self) -> None:
        with self._lock:
            self._bindings = []

    def close(self) -> None:
        self.cancel_all()
        if not self._suspended:
            self._stream.stop()
            self._suspended = True
        self._stream.close()
