"""
Stage timing for logs.

``timeit`` measures a block with ``perf_counter``; the result feeds the
``seconds=`` field of log lines and the timing dicts returned by the
segmenter and the WAV encoder.

Example:
    with timeit("request", meta={"segment": 4}) as t:
        pcm = await endpoint.synthesize(request, credential)
    verbose(_LOG, "request_done", seconds=round(t.timing.seconds, 3))
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    """A finished measurement: what, how long, and optional context."""
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager for timing a block.

    ``timing`` is None inside the block and set on exit, including when
    the block raises, so failed requests are still measured.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=perf_counter() - self._t0, meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds, or -1.0 if the block has not finished."""
        return self.timing.seconds if self.timing else -1.0
