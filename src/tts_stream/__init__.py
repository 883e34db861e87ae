"""
tts-stream: Continuous text-to-speech streaming over rate-limited endpoints.

Long text is split into segments, synthesized one request at a time by a
remote speech model (Gemini TTS) and played back gaplessly while the next
segments are still being generated. Requests are spread over a pool of
API credentials, each with its own sliding-window request budget.

Key Features:
    - Boundary-aware text segmentation (paragraph > sentence > clause > word)
    - Multi-credential pool with per-credential sliding windows
    - Rate-limit cooldowns with live countdowns, exponential backoff
    - Look-ahead fetching bounded to a few segments ahead of playback
    - Gapless scheduling on an audio clock, pause/resume/cancel/stop
    - WAV export of everything generated
    - CLI and HTTP API front ends

Example Usage:
    >>> from tts_stream.core.config import StreamConfig
    >>> from tts_stream.services import create_coordinator, PipelineStatus
    >>>
    >>> coordinator = create_coordinator(StreamConfig(), ["api-key"])
    >>> await coordinator.start("Once upon a time...")
    >>> await coordinator.wait_for_status(PipelineStatus.COMPLETED)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
