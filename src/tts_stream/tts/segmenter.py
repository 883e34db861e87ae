"""
Text Segmentation for Remote Synthesis.

Long input is split into segments no longer than ``max_length``
characters, each sent to the endpoint as one request. Segments end at the
most natural break available, by priority:

    1. Paragraph break (blank line)
    2. Sentence end (. ! ? …, optionally followed by a closing quote or
       bracket) followed by whitespace
    3. Clause punctuation (, ; :) followed by whitespace
    4. Any whitespace
    5. Hard cut at ``max_length``

For each priority the rightmost candidate inside
``[ceil(0.3 * max_length), max_length]`` is taken. Breaks earlier than
that would produce uselessly short requests; a hard cut guarantees
progress on text without any whitespace.

Segments are trimmed and never empty. Joining them with single spaces
gives back the input modulo whitespace.

Example:
    >>> split_text("One. Two three four.", max_length=10).segments
    ['One.', 'Two three', 'four.']
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence

from tts_stream.core.logging import get_logger, verbose
from tts_stream.utils.timeit import timeit

_LOG = get_logger("tts-stream.segmenter")


# =============================================================================
# Break Patterns
# =============================================================================

# Earliest acceptable break, as a fraction of max_length
MIN_BREAK_RATIO = 0.3

# Blank line; cut before it
_PARAGRAPH = re.compile(r"\n[ \t\r\f\v]*\n")

# Sentence terminator plus closing quotes/brackets, followed by whitespace; cut after it
_SENTENCE_END = re.compile(r"[.!?…][\"'”’)\]]*(?=\s)", re.UNICODE)

# Clause punctuation followed by whitespace; cut after it
_CLAUSE_END = re.compile(r"[,;:](?=\s)")

# Any whitespace; cut before it
_WHITESPACE = re.compile(r"\s")

# (pattern, cut after the match?) in priority order
_BREAK_RULES = (
    (_PARAGRAPH, False),
    (_SENTENCE_END, True),
    (_CLAUSE_END, True),
    (_WHITESPACE, False),
)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class SplitResult:
    """
    Result of segmenting a text.

    Attributes:
        segments: Ordered, trimmed, non-empty segments.
        timings_s: Timing measurements in seconds.
    """
    segments: List[str]
    timings_s: Dict[str, float]


# =============================================================================
# Segmentation
# =============================================================================

def _find_break(text: str, max_length: int) -> int:
    """Cut position for ``text`` (longer than max_length); 1 <= result <= max_length."""
    min_break = max(1, math.ceil(max_length * MIN_BREAK_RATIO))
    # One extra character so lookaheads can see what follows position max_length
    window = text[: max_length + 1]

    for pattern, cut_after in _BREAK_RULES:
        best = -1
        for m in pattern.finditer(window):
            pos = m.end() if cut_after else m.start()
            if min_break <= pos <= max_length:
                best = pos
        if best > 0:
            return best

    return max_length


def split_text(text: str, max_length: int = 400) -> SplitResult:
    """
    Split text into synthesis-sized segments.

    Args:
        text: Input text, any length.
        max_length: Maximum characters per segment.

    Returns:
        SplitResult with the materialized segment list. Empty or
        whitespace-only input gives no segments.

    Raises:
        ValueError: If max_length < 1.
    """
    if max_length < 1:
        raise ValueError(f"max_length must be >= 1, got {max_length}")

    timings: Dict[str, float] = {}
    out: List[str] = []

    with timeit("segment") as t:
        rest = (text or "").strip()
        while rest:
            if len(rest) <= max_length:
                out.append(rest)
                break
            cut = _find_break(rest, max_length)
            out.append(rest[:cut].rstrip())
            rest = rest[cut:].lstrip()

    timings["segment"] = t.seconds
    verbose(
        _LOG,
        "segmented",
        segments=len(out),
        chars=len(text or ""),
        max_length=max_length,
        seconds=round(timings["segment"], 4),
    )
    return SplitResult(segments=out, timings_s=timings)


def context_tail(segments: Sequence[str], index: int, max_chars: int = 200) -> str:
    """
    Trailing words of the segment before ``index``.

    Sent alongside a request so the voice continues the previous
    segment's intonation. Starts at a word boundary where possible;
    empty for the first segment.
    """
    if index <= 0 or max_chars <= 0 or index > len(segments):
        return ""

    prev = segments[index - 1]
    if len(prev) <= max_chars:
        return prev

    tail = prev[-max_chars:]
    space = tail.find(" ")
    if 0 <= space < len(tail) - 1:
        tail = tail[space + 1:]
    return tail.strip()
