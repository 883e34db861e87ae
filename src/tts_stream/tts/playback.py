"""
Gapless Playback Scheduler.

Decoded segments arrive irregularly (network latency, cooldowns) but
must sound as one continuous stream. The scheduler keeps a cursor,
``next_start_time``, on the output's audio clock and places each segment
exactly where the previous one ends:

    start = max(next_start_time, now + safety_lead)
    next_start_time = start + duration

When generation keeps ahead of playback, consecutive segments are
back to back with zero gap. When it falls behind, the next segment
starts as soon as possible (``now + safety_lead``) instead of in the
past.

Segment start/end notifications drive the UI and the pipeline's window.
They run on event loop timers and are therefore best effort: accurate
to timer resolution, not to the sample. While paused the timers are
disarmed and the output clock halts; resume re-arms them against the
clock.

Usage:
    scheduler = PlaybackScheduler(SilentOutput(24000))
    scheduler.on_segment_end = lambda sid: ...
    scheduler.enqueue("seg-0", samples)
    scheduler.schedule("seg-0")
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from tts_stream.core.logging import debug, get_logger, verbose
from tts_stream.tts.output import AudioOutput

_LOG = get_logger("tts-stream.playback")

SegmentCallback = Callable[[str], None]
CallLater = Callable[[float, Callable[[], None]], Any]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> Any:
    return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class ScheduledSegment:
    """A segment bound on the output, with its notification timers."""
    segment_id: str
    start_time: float
    duration_s: float
    started: bool = False
    ended: bool = False
    handles: List[Any] = field(default_factory=list)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration_s


class PlaybackScheduler:
    """
    Places decoded segments back to back on an AudioOutput.

    Args:
        output: Audio clock and sink.
        safety_lead_s: Minimum distance between "now" and a new start.
        call_later: ``(delay_s, callback) -> handle`` timer factory; the
            handle must have ``cancel()``. Defaults to the running event
            loop's ``call_later``.
    """

    def __init__(
        self,
        output: AudioOutput,
        safety_lead_s: float = 0.1,
        call_later: Optional[CallLater] = None,
    ):
        self.output = output
        self.safety_lead_s = safety_lead_s
        self._call_later = call_later or _loop_call_later

        self.on_segment_start: Optional[SegmentCallback] = None
        self.on_segment_end: Optional[SegmentCallback] = None

        self._queue: Dict[str, np.ndarray] = {}
        self._scheduled: Dict[str, ScheduledSegment] = {}
        self._next_start = 0.0
        self._inert = False
        self._paused = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def next_start_time(self) -> float:
        return self._next_start

    @property
    def sample_rate(self) -> int:
        return self.output.sample_rate

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_stopped(self) -> bool:
        return self._inert

    def scheduled(self, segment_id: str) -> Optional[ScheduledSegment]:
        return self._scheduled.get(segment_id)

    # =========================================================================
    # Buffer queue
    # =========================================================================

    def enqueue(self, segment_id: str, samples: np.ndarray) -> None:
        """Buffer decoded float32 samples under ``segment_id``."""
        self._queue[segment_id] = np.asarray(samples, dtype=np.float32)

    def has(self, segment_id: str) -> bool:
        """True if samples for ``segment_id`` are buffered."""
        return segment_id in self._queue

    def prune(self, segment_ids: Iterable[str]) -> None:
        """Release buffers (and finished bookkeeping) of played segments."""
        for sid in segment_ids:
            self._queue.pop(sid, None)
            entry = self._scheduled.get(sid)
            if entry is not None and entry.ended:
                del self._scheduled[sid]

    def clear_queue(self) -> None:
        self._queue.clear()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def init(self) -> None:
        """Make the scheduler usable again after ``stop()`` and start the clock."""
        self._inert = False
        self._paused = False
        self.output.resume()

    def schedule(self, segment_id: str) -> bool:
        """
        Bind a buffered segment right after the previously scheduled one.

        Must be called in playback order.

        Returns:
            False without side effects if the segment is not buffered, is
            already scheduled, or the scheduler was stopped.
        """
        if self._inert:
            debug(_LOG, "schedule_ignored_stopped", segment=segment_id)
            return False
        samples = self._queue.get(segment_id)
        if samples is None or segment_id in self._scheduled:
            return False

        now = self.output.now()
        start = max(self._next_start, now + self.safety_lead_s)
        duration = len(samples) / float(self.output.sample_rate)

        self.output.play_at(segment_id, samples, start)
        entry = ScheduledSegment(segment_id=segment_id, start_time=start, duration_s=duration)
        self._scheduled[segment_id] = entry
        self._next_start = start + duration

        if not self._paused:
            self._arm(entry)

        verbose(_LOG, "segment_scheduled", segment=segment_id, start=round(start, 3),
                duration_s=round(duration, 3), lead_s=round(start - now, 3))
        return True

    def pause(self) -> None:
        """Suspend the output clock and disarm notification timers."""
        self._paused = True
        self.output.suspend()
        for entry in self._scheduled.values():
            self._disarm(entry)

    def resume(self) -> None:
        """Resume the clock and re-arm timers; also clears a prior ``stop()``."""
        self._paused = False
        self._inert = False
        self.output.resume()
        for entry in self._scheduled.values():
            if not entry.ended:
                self._arm(entry)

    def stop(self) -> None:
        """
        Cancel all bound audio and timers and reset the cursor to zero.

        ``schedule`` is a no-op until ``init()`` or ``resume()``. Buffered
        samples are kept.
        """
        self.output.cancel_all()
        for entry in self._scheduled.values():
            self._disarm(entry)
        self._scheduled.clear()
        self._next_start = 0.0
        self._paused = False
        self._inert = True
        debug(_LOG, "scheduler_stopped", buffered=len(self._queue))

    # =========================================================================
    # Timers
    # =========================================================================

    def _arm(self, entry: ScheduledSegment) -> None:
        self._disarm(entry)
        now = self.output.now()
        if not entry.started:
            entry.handles.append(self._call_later(max(0.0, entry.start_time - now), lambda: self._fire_start(entry)))
        entry.handles.append(self._call_later(max(0.0, entry.end_time - now), lambda: self._fire_end(entry)))

    def _disarm(self, entry: ScheduledSegment) -> None:
        for handle in entry.handles:
            handle.cancel()
        entry.handles.clear()

    def _fire_start(self, entry: ScheduledSegment) -> None:
        if entry.started or self._scheduled.get(entry.segment_id) is not entry:
            return
        entry.started = True
        if self.on_segment_start is not None:
            self.on_segment_start(entry.segment_id)

    def _fire_end(self, entry: ScheduledSegment) -> None:
        if entry.ended or self._scheduled.get(entry.segment_id) is not entry:
            return
        # Start always precedes end, even if timers fire out of order
        self._fire_start(entry)
        entry.ended = True
        entry.handles.clear()
        if self.on_segment_end is not None:
            self.on_segment_end(entry.segment_id)
