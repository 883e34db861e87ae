"""
PipelineCoordinator - Text to Continuous Speech.

This module owns a streaming session end to end:

    text -> split_text -> segments -> SynthesisClient (per segment, in order,
    within the look-ahead window) -> decode -> PlaybackScheduler -> audio

Architecture:
    - One asyncio task (the fetch loop) pulls the first pending segment,
      but only while it lies within ``lookahead`` segments of the one
      currently playing (of the first one, before playback starts).
      Exactly one request is in flight at a time.
    - Ready segments are scheduled strictly in text order; a slow segment
      holds back the ones behind it rather than being skipped.
    - Scheduler start/end notifications advance the playback index,
      release played audio from memory and wake the fetch loop.

Session status:
    IDLE -> PREPARING -> PROCESSING <-> PLAYING <-> PAUSED -> COMPLETED | ERROR

    PROCESSING while a request is in flight, PLAYING otherwise. A failed
    segment stops the session (ERROR for credential/configuration
    problems, PAUSED for rejected requests or spent retries) and the
    failure is reported through the status callback; ``resume()``
    retries it. ``cancel()`` halts generation only: the session stays
    PLAYING, scheduled audio plays out and ``pause()`` still applies.

Example:
    >>> coordinator = create_coordinator(StreamConfig(), ["api-key"])
    >>> await coordinator.start(book_text, VoiceParams(voice="Kore"))
    >>> await coordinator.wait_for_status(PipelineStatus.COMPLETED)
    >>> wav = coordinator.export_wav()
"""
from __future__ import annotations

import asyncio
import contextlib
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from tts_stream.core.config import StreamConfig
from tts_stream.core.logging import error, fail, get_logger, info, set_session_id, success, verbose
from tts_stream.tts.client import ClientEvent, SynthesisClient
from tts_stream.tts.credentials import CredentialPool, mask_credential
from tts_stream.tts.endpoint import GeminiSpeechEndpoint, SpeechEndpoint, SynthesisRequest
from tts_stream.tts.errors import (
    AuthError,
    ExhaustedRetries,
    InvalidInputError,
    InvalidRequestError,
    InvalidStateError,
    NoCredentialsAvailable,
    PipelineCancelled,
    TTSStreamError,
)
from tts_stream.tts.output import AudioOutput, SilentOutput
from tts_stream.tts.playback import PlaybackScheduler
from tts_stream.tts.presets import DEFAULT_VOICE, resolve_style
from tts_stream.tts.retry import RetryPolicy
from tts_stream.tts.segmenter import context_tail, split_text
from tts_stream.utils.audio import pcm16_to_float32, wav_bytes_from_pcm16

_LOG = get_logger("tts-stream.pipeline")


# =============================================================================
# Status Enums
# =============================================================================

class PipelineStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PROCESSING = "processing"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class SegmentStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    READY = "ready"
    PLAYING = "playing"
    PLAYED = "played"
    ERROR = "error"


# Allowed segment transitions. GENERATING -> PENDING happens when a fetch
# is cancelled; ERROR -> PENDING only through an explicit resume().
_SEGMENT_TRANSITIONS = {
    SegmentStatus.PENDING: {SegmentStatus.GENERATING},
    SegmentStatus.GENERATING: {SegmentStatus.READY, SegmentStatus.ERROR, SegmentStatus.PENDING},
    SegmentStatus.READY: {SegmentStatus.PLAYING},
    SegmentStatus.PLAYING: {SegmentStatus.PLAYED},
    SegmentStatus.PLAYED: set(),
    SegmentStatus.ERROR: {SegmentStatus.PENDING},
}

_GENERATED = (SegmentStatus.READY, SegmentStatus.PLAYING, SegmentStatus.PLAYED)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Segment:
    """
    One synthesis unit.

    Attributes:
        index: Position in the text (0-based); fixed at creation.
        id: Stable identifier, unique across sessions.
        text: Source text slice.
        status: Lifecycle status; only moves along allowed transitions.
        duration_s: Decoded audio duration, once ready.
        error: Failure message, when status is ERROR.
    """
    index: int
    id: str
    text: str
    status: SegmentStatus = SegmentStatus.PENDING
    duration_s: Optional[float] = None
    error: Optional[str] = None

    def advance(self, status: SegmentStatus) -> None:
        if status not in _SEGMENT_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"segment {self.index}: cannot go from {self.status.value} to {status.value}"
            )
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "status": self.status.value,
            "chars": len(self.text),
            "duration_s": round(self.duration_s, 3) if self.duration_s is not None else None,
            "error": self.error,
        }


@dataclass
class VoiceParams:
    """
    Voice settings for a session.

    Attributes:
        voice: Prebuilt voice name.
        style: Style preset label or free-text instruction.
        language: Language code (en, hi, hinglish).
    """
    voice: str = DEFAULT_VOICE
    style: str = ""
    language: str = "en"


@dataclass
class StatusUpdate:
    """
    One entry of the status stream.

    Attributes:
        status: Session status at emission time.
        message: Human-readable status line.
        progress: Percent of segments generated (0-100).
        current_index: Segment playing now, -1 before playback.
        kind: "status", "segment", "waiting", "cooldown", "backoff" or
            "error".
        cooldown_s: Seconds left in a wait, for waiting/cooldown/backoff
            updates.
        error: Error payload for "error" updates.
    """
    status: PipelineStatus
    message: str
    progress: int
    current_index: int
    kind: str = "status"
    cooldown_s: Optional[float] = None
    error: Optional[Dict[str, Any]] = None


UpdateCallback = Callable[[StatusUpdate], None]


# =============================================================================
# Coordinator
# =============================================================================

class PipelineCoordinator:
    """
    Drives segmentation, fetching, scheduling and session control.

    Control methods must be called from the event loop thread that runs
    the session.

    Usage:
        coordinator = PipelineCoordinator(client, scheduler, config, on_update=print)
        await coordinator.start(text, VoiceParams())
        coordinator.pause(); coordinator.resume()
        coordinator.skip_credential()
        coordinator.set_credentials(["new-key"]); coordinator.set_rate_limit(15)
        await coordinator.stop()
    """

    def __init__(
        self,
        client: SynthesisClient,
        scheduler: PlaybackScheduler,
        config: Optional[StreamConfig] = None,
        on_update: Optional[UpdateCallback] = None,
    ):
        self._client = client
        self._scheduler = scheduler
        self._config = config or StreamConfig()
        self.on_update = on_update

        # ─────────────────────────────────────────────────────────────────────
        # Wiring
        # ─────────────────────────────────────────────────────────────────────
        self._client.on_event = self._on_client_event
        self._scheduler.on_segment_start = self._on_segment_start
        self._scheduler.on_segment_end = self._on_segment_end

        # ─────────────────────────────────────────────────────────────────────
        # Session State
        # ─────────────────────────────────────────────────────────────────────
        self._session_id = "-"
        self._status = PipelineStatus.IDLE
        self._message = ""
        self._segments: List[Segment] = []
        self._by_id: Dict[str, Segment] = {}
        self._voice = VoiceParams()
        self._current_index = -1
        self._schedule_cursor = 0
        self._in_flight: Optional[int] = None
        self._error: Optional[TTSStreamError] = None
        self._pcm: Dict[int, bytes] = {}

        # ─────────────────────────────────────────────────────────────────────
        # Task Control
        # ─────────────────────────────────────────────────────────────────────
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._cancel: Optional[asyncio.Event] = None
        self._status_changed: Optional[asyncio.Event] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def message(self) -> str:
        return self._message

    @property
    def segments(self) -> List[Segment]:
        return list(self._segments)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def error(self) -> Optional[TTSStreamError]:
        return self._error

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def client(self) -> SynthesisClient:
        return self._client

    @property
    def scheduler(self) -> PlaybackScheduler:
        return self._scheduler

    @property
    def pool(self) -> CredentialPool:
        return self._client.pool

    @property
    def progress(self) -> int:
        """Percent of segments whose audio has been generated."""
        if not self._segments:
            return 0
        done = sum(1 for s in self._segments if s.status in _GENERATED)
        return int(round(100 * done / len(self._segments)))

    @property
    def generation_halted(self) -> bool:
        """True after ``cancel()`` until the next ``resume()``."""
        return self._cancel is not None and self._cancel.is_set() and self.is_running()

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Session Control
    # =========================================================================

    async def start(self, text: str, voice: Optional[VoiceParams] = None) -> List[Segment]:
        """
        Start a new session, replacing any running one.

        Returns:
            The segments created from ``text``.

        Raises:
            InvalidInputError: If ``text`` yields no segments.
        """
        if self.is_running():
            await self.stop()

        self._reset()
        self._session_id = uuid4().hex[:12]
        set_session_id(self._session_id)
        self._voice = voice or VoiceParams(
            voice=self._config.voice.voice,
            style=self._config.voice.style,
            language=self._config.voice.language,
        )
        self._wake = asyncio.Event()
        self._cancel = asyncio.Event()
        self._status_changed = asyncio.Event()

        self._set_status(PipelineStatus.PREPARING, "Splitting text...")
        texts = split_text(text, self._config.segmenting.max_chars).segments
        if not texts:
            self._set_status(PipelineStatus.IDLE, "Nothing to read")
            raise InvalidInputError("Text is empty")

        self._segments = [
            Segment(index=i, id=f"{self._session_id}-{i}", text=t) for i, t in enumerate(texts)
        ]
        self._by_id = {s.id: s for s in self._segments}

        self._scheduler.stop()
        self._scheduler.clear_queue()
        self._scheduler.init()

        info(_LOG, "session_started", segments=len(texts), chars=len(text), voice=self._voice.voice,
             language=self._voice.language, lookahead=self._config.pipeline.lookahead)
        self._set_status(PipelineStatus.PROCESSING, f"Prepared {len(texts)} segments")
        self._task = asyncio.create_task(self._run(), name=f"tts-stream-{self._session_id}")
        return self.segments

    def pause(self) -> None:
        """Pause playback; no new requests are started while paused."""
        if self._status not in (PipelineStatus.PROCESSING, PipelineStatus.PLAYING):
            raise InvalidStateError(f"cannot pause while {self._status.value}")
        self._scheduler.pause()
        self._set_status(PipelineStatus.PAUSED, "Paused")

    def resume(self) -> None:
        """
        Resume after pause, cancel or a segment failure.

        Failed segments go back to pending and are requested again.
        """
        halted = self.generation_halted and self._status in (
            PipelineStatus.PROCESSING, PipelineStatus.PLAYING,
        )
        if self._status not in (PipelineStatus.PAUSED, PipelineStatus.ERROR) and not halted:
            raise InvalidStateError(f"cannot resume while {self._status.value}")

        for seg in self._segments:
            if seg.status == SegmentStatus.ERROR:
                seg.advance(SegmentStatus.PENDING)
                seg.error = None
        self._error = None
        if self._cancel is not None and self._cancel.is_set():
            self._cancel = asyncio.Event()

        self._scheduler.resume()
        self._set_status(PipelineStatus.PLAYING, "Resumed")
        self._schedule_ready()
        self._refresh_status()
        self._kick()

    def cancel(self) -> None:
        """
        Abandon generation but keep already scheduled audio playing.

        The in-flight request's response is discarded and its segment
        returns to pending. Segments that are already generated are
        still scheduled and played; ``pause()`` and ``stop()`` work as
        usual. ``resume()`` restarts generation from the first pending
        segment.
        """
        if self._status not in (PipelineStatus.PROCESSING, PipelineStatus.PLAYING, PipelineStatus.PAUSED):
            raise InvalidStateError(f"cannot cancel while {self._status.value}")
        if self._cancel is not None:
            self._cancel.set()
        self._client.notify_pool_changed()
        info(_LOG, "generation_cancelled", in_flight=self._in_flight)
        if self._status == PipelineStatus.PAUSED:
            self._emit("Generation cancelled")
        else:
            self._set_status(PipelineStatus.PLAYING, "Generation cancelled")

    async def stop(self) -> None:
        """Hard stop: abandon generation, silence audio, go IDLE."""
        if self._cancel is not None:
            self._cancel.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for seg in self._segments:
            if seg.status == SegmentStatus.GENERATING:
                seg.advance(SegmentStatus.PENDING)
        self._in_flight = None
        self._scheduler.stop()
        self._scheduler.clear_queue()
        self._current_index = -1
        self._schedule_cursor = 0
        if self._status != PipelineStatus.IDLE:
            info(_LOG, "session_stopped", progress=self.progress)
        self._set_status(PipelineStatus.IDLE, "Stopped")

    def skip_credential(self) -> str:
        """
        Put the credential in use (or the pool's best) on cooldown.

        Any wait in progress is re-evaluated immediately, so the next
        attempt moves to another credential when one is free.

        Returns:
            The masked credential that was skipped.

        Raises:
            NoCredentialsAvailable: If the pool is empty.
        """
        credential = self._client.current_credential
        if credential is None or credential not in self.pool.credentials:
            credential = self.pool.peek_best().credential
        self.pool.force_cooldown(credential)
        self._client.notify_pool_changed()
        masked = mask_credential(credential)
        self._emit(f"Skipped credential {masked}", kind="status")
        return masked

    def set_credentials(self, credentials: Sequence[str]) -> int:
        """
        Replace the pool's credentials mid-session.

        A wait in progress is re-evaluated at once, so the next attempt
        uses a new credential as soon as one is free.

        Returns:
            Number of credentials now configured.

        Raises:
            InvalidInputError: If no usable credential is given.
        """
        usable = [c.strip() for c in credentials if c and c.strip()]
        if not usable:
            raise InvalidInputError("At least one credential is required")
        self.pool.set_credentials(usable)
        self._client.notify_pool_changed()
        count = len(self.pool)
        self._emit(f"Credentials updated ({count} configured)", kind="status")
        return count

    def set_rate_limit(self, requests_per_window: int) -> None:
        """
        Change the per-credential request limit mid-session.

        Raises:
            InvalidInputError: If ``requests_per_window`` is below 1.
        """
        try:
            self.pool.set_limit(requests_per_window)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        self._client.notify_pool_changed()
        self._emit(f"Rate limit set to {requests_per_window} per credential", kind="status")

    async def wait_for_status(self, *statuses: PipelineStatus) -> PipelineStatus:
        """Wait until the session reaches one of ``statuses``."""
        while self._status not in statuses:
            if self._status_changed is None:
                self._status_changed = asyncio.Event()
            self._status_changed.clear()
            await self._status_changed.wait()
        return self._status

    async def wait_closed(self) -> None:
        """Wait for the fetch task to exit (after COMPLETED or stop)."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def close(self) -> None:
        """Stop the session and release the endpoint and audio output."""
        await self.stop()
        await self._client.endpoint.aclose()
        self._scheduler.output.close()

    # =========================================================================
    # Export / Snapshot
    # =========================================================================

    def export_wav(self) -> Optional[bytes]:
        """
        WAV file of every generated segment, in text order.

        Returns None when nothing has been generated yet.
        """
        if not self._pcm:
            return None
        chunks = [self._pcm[i] for i in sorted(self._pcm)]
        wav, _ = wav_bytes_from_pcm16(chunks, self._scheduler.sample_rate)
        success(_LOG, "wav_exported", segments=len(chunks), bytes=len(wav))
        return wav

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of the session for status endpoints."""
        return {
            "session_id": self._session_id,
            "status": self._status.value,
            "message": self._message,
            "progress": self.progress,
            "current_index": self._current_index,
            "total": len(self._segments),
            "segments": [s.to_dict() for s in self._segments],
            "error": self._error.to_dict() if self._error else None,
            "generation_halted": self.generation_halted,
            "credentials": [asdict(c) for c in self.pool.stats()],
        }

    # =========================================================================
    # Fetch Loop
    # =========================================================================

    async def _run(self) -> None:
        assert self._wake is not None
        while self._status not in (PipelineStatus.COMPLETED, PipelineStatus.IDLE):
            idx = None
            if self._status in (PipelineStatus.PROCESSING, PipelineStatus.PLAYING):
                idx = self._next_fetchable()
            if idx is None:
                await self._wake.wait()
                self._wake.clear()
                continue
            await self._fetch(self._segments[idx])
        verbose(_LOG, "fetch_loop_exit", status=self._status.value)

    def _next_fetchable(self) -> Optional[int]:
        """First pending segment, if it lies within the look-ahead window."""
        if self._cancel is not None and self._cancel.is_set():
            return None
        limit = max(self._current_index, 0) + self._config.pipeline.lookahead
        for seg in self._segments:
            if seg.status == SegmentStatus.ERROR:
                return None
            if seg.status == SegmentStatus.PENDING:
                return seg.index if seg.index <= limit else None
        return None

    async def _fetch(self, seg: Segment) -> None:
        assert self._cancel is not None
        seg.advance(SegmentStatus.GENERATING)
        self._in_flight = seg.index
        total = len(self._segments)
        self._set_status(
            PipelineStatus.PROCESSING,
            f"Generating segment {seg.index + 1}/{total}...",
            kind="segment",
        )

        request = SynthesisRequest(
            text=seg.text,
            voice=self._voice.voice,
            style=resolve_style(self._voice.style),
            language=self._voice.language,
            prior_context=context_tail(
                [s.text for s in self._segments], seg.index, self._config.segmenting.context_chars
            ),
        )

        try:
            pcm = await self._client.synthesize(request, cancel=self._cancel)
        except PipelineCancelled:
            seg.advance(SegmentStatus.PENDING)
            self._in_flight = None
            verbose(_LOG, "fetch_abandoned", index=seg.index)
            self._refresh_status()
            return
        except (AuthError, NoCredentialsAvailable) as e:
            self._fail_segment(seg, e, PipelineStatus.ERROR)
            return
        except (InvalidRequestError, ExhaustedRetries) as e:
            self._fail_segment(seg, e, PipelineStatus.PAUSED)
            return
        finally:
            self._in_flight = None

        try:
            samples = pcm16_to_float32(pcm)
        except ValueError as e:
            self._fail_segment(seg, InvalidRequestError(f"Undecodable audio: {e}"), PipelineStatus.PAUSED)
            return
        if samples.size == 0:
            self._fail_segment(seg, InvalidRequestError("Endpoint returned empty audio"), PipelineStatus.PAUSED)
            return

        seg.duration_s = samples.size / float(self._scheduler.sample_rate)
        if self._config.pipeline.keep_export_audio:
            self._pcm[seg.index] = pcm
        self._scheduler.enqueue(seg.id, samples)
        seg.advance(SegmentStatus.READY)
        info(_LOG, "segment_ready", index=seg.index, total=total, duration_s=round(seg.duration_s, 2))

        self._schedule_ready()
        self._refresh_status(f"Segment {seg.index + 1}/{total} ready")

    def _fail_segment(self, seg: Segment, err: TTSStreamError, status: PipelineStatus) -> None:
        seg.advance(SegmentStatus.ERROR)
        seg.error = err.message
        self._error = err
        fail(_LOG, "segment_failed", index=seg.index, code=err.code, message=err.message)
        self._set_status(status, f"Segment {seg.index + 1} failed: {err.message}", kind="error")

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _schedule_ready(self) -> None:
        """Schedule consecutive ready segments from the scheduling cursor."""
        if self._status == PipelineStatus.PAUSED or self._scheduler.is_paused or self._scheduler.is_stopped:
            return
        while self._schedule_cursor < len(self._segments):
            seg = self._segments[self._schedule_cursor]
            if seg.status != SegmentStatus.READY or not self._scheduler.has(seg.id):
                break
            if not self._scheduler.schedule(seg.id):
                break
            self._schedule_cursor += 1

    def _on_segment_start(self, segment_id: str) -> None:
        seg = self._by_id.get(segment_id)
        if seg is None or seg.status != SegmentStatus.READY:
            return
        for other in self._segments:
            if other.status == SegmentStatus.PLAYING:
                other.advance(SegmentStatus.PLAYED)
        seg.advance(SegmentStatus.PLAYING)
        self._current_index = seg.index
        verbose(_LOG, "segment_playing", index=seg.index)
        self._emit(f"Playing segment {seg.index + 1}/{len(self._segments)}", kind="segment")
        self._kick()

    def _on_segment_end(self, segment_id: str) -> None:
        seg = self._by_id.get(segment_id)
        if seg is None:
            return
        if seg.status == SegmentStatus.PLAYING:
            seg.advance(SegmentStatus.PLAYED)
        self._scheduler.prune([segment_id])
        self._schedule_ready()

        if self._segments and all(s.status == SegmentStatus.PLAYED for s in self._segments):
            success(_LOG, "session_completed", segments=len(self._segments))
            self._set_status(PipelineStatus.COMPLETED, "Finished")
        self._kick()

    # =========================================================================
    # Status Stream
    # =========================================================================

    def _refresh_status(self, message: Optional[str] = None) -> None:
        if self._status not in (PipelineStatus.PROCESSING, PipelineStatus.PLAYING):
            return
        status = PipelineStatus.PROCESSING if self._in_flight is not None else PipelineStatus.PLAYING
        self._set_status(status, message or self._message)

    def _set_status(self, status: PipelineStatus, message: str, kind: str = "status") -> None:
        self._status = status
        self._message = message
        if self._status_changed is not None:
            self._status_changed.set()
        payload = self._error.to_dict() if (kind == "error" and self._error) else None
        self._emit(message, kind=kind, error_payload=payload)

    def _emit(
        self,
        message: str,
        kind: str = "status",
        cooldown_s: Optional[float] = None,
        error_payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.on_update is None:
            return
        update = StatusUpdate(
            status=self._status,
            message=message,
            progress=self.progress,
            current_index=self._current_index,
            kind=kind,
            cooldown_s=cooldown_s,
            error=error_payload,
        )
        try:
            self.on_update(update)
        except Exception as e:  # a broken listener must not kill the session
            error(_LOG, "status_callback_failed", error=str(e))

    def _on_client_event(self, event: ClientEvent) -> None:
        kind = "status" if event.kind == "resumed" else event.kind
        self._emit(event.message, kind=kind, cooldown_s=round(event.remaining_s, 2))

    def _kick(self) -> None:
        if self._wake is not None:
            self._wake.set()

    def _reset(self) -> None:
        self._segments = []
        self._by_id = {}
        self._pcm = {}
        self._current_index = -1
        self._schedule_cursor = 0
        self._in_flight = None
        self._error = None
        self._message = ""


# =============================================================================
# Assembly
# =============================================================================

def create_output(config: StreamConfig) -> AudioOutput:
    """Audio output named by ``playback.output`` (silent or device)."""
    if config.playback.output == "device":
        # Needs PortAudio; only imported when asked for
        from tts_stream.tts.output_device import SoundDeviceOutput
        return SoundDeviceOutput(sample_rate=config.playback.sample_rate)
    return SilentOutput(sample_rate=config.playback.sample_rate)


def create_coordinator(
    config: StreamConfig,
    credentials: Sequence[str],
    endpoint: Optional[SpeechEndpoint] = None,
    output: Optional[AudioOutput] = None,
    on_update: Optional[UpdateCallback] = None,
) -> PipelineCoordinator:
    """Wire pool, client, scheduler and coordinator from configuration."""
    pool = CredentialPool(
        credentials,
        limit=config.rate_limit.requests_per_minute,
        window_s=config.rate_limit.window_s,
        safety_margin_s=config.rate_limit.safety_margin_s,
    )
    client = SynthesisClient(
        endpoint or GeminiSpeechEndpoint(config.endpoint),
        pool,
        RetryPolicy.from_config(config.retry),
    )
    scheduler = PlaybackScheduler(
        output or create_output(config),
        safety_lead_s=config.playback.safety_lead_s,
    )
    info(_LOG, "coordinator_created", credentials=len(pool), rpm=pool.limit,
         output=type(scheduler.output).__name__)
    return PipelineCoordinator(client, scheduler, config, on_update=on_update)
