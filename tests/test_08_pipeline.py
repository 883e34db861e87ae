"""
Tests for the pipeline coordinator.

Sessions run on a real event loop with a SilentOutput, a ScriptedEndpoint
and millisecond-scale audio, windows and retry timings.

Tests cover:
- Single-segment session and WAV export
- Five segments / one credential / limit 2: waiting before the 3rd request
- Text order, prior context, look-ahead bound (also before playback)
- pause/resume, cancel (audio plays on, pause still works), stop
- skip_credential, set_credentials, set_rate_limit during a wait
- Failure handling: ERROR vs PAUSED, resume retries the failed segment
- Invalid input and invalid state
"""
import asyncio

import pytest

from conftest import ScriptedEndpoint, make_pcm, read_wav
from tts_stream.core.config import (
    PipelineConfig,
    PlaybackConfig,
    RateLimitConfig,
    RetryConfig,
    SegmentingConfig,
    StreamConfig,
)
from tts_stream.services.pipeline import (
    PipelineStatus,
    Segment,
    SegmentStatus,
    VoiceParams,
    create_coordinator,
    create_output,
)
from tts_stream.tts.errors import (
    AuthError,
    InvalidInputError,
    InvalidRequestError,
    InvalidStateError,
    RateLimited,
    TransientError,
)
from tts_stream.tts.output import SilentOutput

# Splits into exactly five segments at max_chars=20
TEXT5 = "Alpha one. Bravo two. Charlie three. Delta four. Echo five."
SEGMENTS5 = ["Alpha one.", "Bravo two.", "Charlie three.", "Delta four.", "Echo five."]

SHORT_PCM = make_pcm(480)      # 20 ms at 24 kHz


def _config(rpm=9, window_s=60.0, lookahead=3, max_chars=20, keep_export_audio=True) -> StreamConfig:
    return StreamConfig(
        segmenting=SegmentingConfig(max_chars=max_chars, context_chars=50),
        rate_limit=RateLimitConfig(requests_per_minute=rpm, window_s=window_s, safety_margin_s=0.01),
        retry=RetryConfig(
            max_attempts=2,
            backoff_base_s=0.001,
            rate_limit_floor_s=0.01,
            rate_limit_pad_s=0.0,
            rate_limit_pad_ratio=0.0,
            jitter_s=0.0,
            max_rate_limit_retries=1,
            countdown_tick_s=0.02,
        ),
        playback=PlaybackConfig(sample_rate=24000, safety_lead_s=0.01),
        pipeline=PipelineConfig(lookahead=lookahead, keep_export_audio=keep_export_audio),
    )


def _coordinator(endpoint, config=None, credentials=("key-aaaa",), updates=None):
    output = SilentOutput(sample_rate=24000)
    on_update = updates.append if updates is not None else None
    coordinator = create_coordinator(config or _config(), list(credentials), endpoint=endpoint,
                                     output=output, on_update=on_update)
    return coordinator, output


async def _wait(coordinator, *statuses, timeout=10.0):
    return await asyncio.wait_for(coordinator.wait_for_status(*statuses), timeout=timeout)


async def _until(predicate, timeout=5.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout=timeout)


class TestSession:
    """Complete sessions."""

    def test_single_segment(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        updates = []
        coordinator, output = _coordinator(endpoint, updates=updates)

        async def go():
            segments = await coordinator.start("Hello world.")
            assert [s.text for s in segments] == ["Hello world."]
            status = await _wait(coordinator, PipelineStatus.COMPLETED)
            await coordinator.wait_closed()
            return status

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert len(endpoint.calls) == 1
        assert coordinator.progress == 100
        assert coordinator.segments[0].status == SegmentStatus.PLAYED
        assert [u.status for u in updates][0] == PipelineStatus.PREPARING
        assert updates[-1].status == PipelineStatus.COMPLETED

        wav = coordinator.export_wav()
        assert wav[:4] == b"RIFF"
        samples, sr = read_wav(wav)
        assert sr == 24000
        assert len(samples) == 480

    def test_five_segments_one_credential_limit_two(self):
        """A waiting notification precedes the third request."""
        log = []
        endpoint = ScriptedEndpoint(default=SHORT_PCM, log=log)
        coordinator, output = _coordinator(endpoint, config=_config(rpm=2, window_s=0.3))
        coordinator.on_update = lambda u: log.append(("update", u.kind))

        async def go():
            segments = await coordinator.start(TEXT5)
            assert [s.text for s in segments] == SEGMENTS5
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert [text for text, _ in endpoint.calls] == SEGMENTS5

        request_positions = [i for i, entry in enumerate(log) if entry[0] == "request"]
        waiting_positions = [i for i, entry in enumerate(log) if entry == ("update", "waiting")]
        assert waiting_positions
        assert waiting_positions[0] < request_positions[2]
        assert ("update", "cooldown") not in log
        assert all(s.status == SegmentStatus.PLAYED for s in coordinator.segments)

    def test_text_order_and_context(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, output = _coordinator(endpoint)

        async def go():
            await coordinator.start(TEXT5, VoiceParams(voice="Kore", style="Whisper", language="hi"))
            await _wait(coordinator, PipelineStatus.COMPLETED)

        asyncio.run(go())
        requests = endpoint.requests
        assert [r.text for r in requests] == SEGMENTS5
        assert requests[0].prior_context == ""
        assert requests[1].prior_context == SEGMENTS5[0]
        assert requests[0].voice == "Kore"
        assert requests[0].language == "hi"
        assert requests[0].style.startswith("Whisper this very quietly")

        starts = [b.start_time for b in output.bindings]
        assert starts == sorted(starts)
        assert [b.segment_id.rsplit("-", 1)[1] for b in output.bindings] == ["0", "1", "2", "3", "4"]

    def test_lookahead_bound(self):
        """Only ``lookahead`` segments beyond the playing one are fetched."""
        endpoint = ScriptedEndpoint(default=make_pcm(7200))   # 0.3 s each
        coordinator, _ = _coordinator(endpoint, config=_config(lookahead=1))

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.1)
            fetched = len(endpoint.calls)
            await coordinator.stop()
            return fetched

        assert asyncio.run(go()) == 2

    def test_lookahead_before_playback(self):
        """Before the first segment plays, segments 0..lookahead are fetched."""
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        config = _config(lookahead=1)
        config.playback.safety_lead_s = 5.0     # first segment starts 5 s out
        coordinator, _ = _coordinator(endpoint, config=config)

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.1)
            state = (len(endpoint.calls), coordinator.current_index)
            await coordinator.stop()
            return state

        assert asyncio.run(go()) == (2, -1)

    def test_default_voice_from_config(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("Hi.")
            await _wait(coordinator, PipelineStatus.COMPLETED)

        asyncio.run(go())
        assert endpoint.requests[0].voice == "Puck"

    def test_export_disabled(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint, config=_config(keep_export_audio=False))

        async def go():
            await coordinator.start("Hi.")
            await _wait(coordinator, PipelineStatus.COMPLETED)

        asyncio.run(go())
        assert coordinator.export_wav() is None


class TestControl:
    """pause, resume, cancel, stop, skip_credential."""

    def test_pause_and_resume(self):
        endpoint = ScriptedEndpoint(default=make_pcm(1200))     # 50 ms each
        coordinator, output = _coordinator(endpoint, config=_config(lookahead=1))

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.03)
            coordinator.pause()
            assert coordinator.status == PipelineStatus.PAUSED
            assert output.suspended
            calls_at_pause = len(endpoint.calls)

            await asyncio.sleep(0.2)
            assert coordinator.status == PipelineStatus.PAUSED
            assert len(endpoint.calls) == calls_at_pause

            coordinator.resume()
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert len(endpoint.calls) == 5

    def test_cancel_returns_segment_to_pending(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM, delay_s=0.1)
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("One here.")
            await asyncio.sleep(0.03)
            coordinator.cancel()
            assert coordinator.status == PipelineStatus.PLAYING
            assert coordinator.generation_halted
            await asyncio.sleep(0.2)
            assert coordinator.segments[0].status == SegmentStatus.PENDING
            assert coordinator.status == PipelineStatus.PLAYING
            assert len(endpoint.calls) == 1

            coordinator.resume()
            assert not coordinator.generation_halted
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert len(endpoint.calls) == 2

    def test_cancel_keeps_audio_and_allows_pause(self):
        """After cancel, scheduled audio plays on and can still be paused."""
        endpoint = ScriptedEndpoint(default=make_pcm(4800), delay_s=0.02)   # 0.2 s each
        coordinator, output = _coordinator(endpoint)

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.1)
            coordinator.cancel()
            calls = len(endpoint.calls)
            index = coordinator.current_index

            await asyncio.sleep(0.2)
            assert coordinator.current_index > index
            assert len(endpoint.calls) == calls
            assert not output.suspended

            coordinator.pause()
            assert coordinator.status == PipelineStatus.PAUSED
            assert coordinator.scheduler.is_paused
            assert output.suspended

            coordinator.resume()
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert {text for text, _ in endpoint.calls} == set(SEGMENTS5)
        assert all(s.status == SegmentStatus.PLAYED for s in coordinator.segments)

    def test_cancel_while_paused_stays_paused(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint, config=_config(lookahead=1))

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.01)
            coordinator.pause()
            coordinator.cancel()
            assert coordinator.status == PipelineStatus.PAUSED
            coordinator.resume()
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED

    def test_stop_goes_idle(self):
        endpoint = ScriptedEndpoint(default=make_pcm(24000))    # 1 s each
        coordinator, output = _coordinator(endpoint)

        async def go():
            await coordinator.start(TEXT5)
            await asyncio.sleep(0.05)
            await coordinator.stop()

        asyncio.run(go())
        assert coordinator.status == PipelineStatus.IDLE
        assert coordinator.current_index == -1
        assert output.bindings == []
        assert coordinator.scheduler.is_stopped
        assert not coordinator.is_running()
        assert all(s.status != SegmentStatus.GENERATING for s in coordinator.segments)

    def test_restart_after_stop(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start(TEXT5)
            await coordinator.stop()
            first = coordinator.session_id
            await coordinator.start("Second run.")
            await _wait(coordinator, PipelineStatus.COMPLETED)
            return first

        first = asyncio.run(go())
        assert first != coordinator.session_id
        assert [s.text for s in coordinator.segments] == ["Second run."]

    def test_skip_credential(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint, credentials=("key-aaaa", "key-bbbb"), config=_config(rpm=3))

        masked = coordinator.skip_credential()
        assert masked == "...aaaa"
        assert coordinator.pool.load_of("key-aaaa") == 3

        async def go():
            await coordinator.start("Hi.")
            await _wait(coordinator, PipelineStatus.COMPLETED)

        asyncio.run(go())
        assert endpoint.calls[0][1] == "key-bbbb"

    def test_skip_credential_during_cooldown(self):
        """Skipping the rate-limited key ends the stale countdown."""
        endpoint = ScriptedEndpoint([RateLimited("429", detail="Please retry in 30s")], default=SHORT_PCM)
        updates = []
        coordinator, _ = _coordinator(endpoint, credentials=("key-aaaa", "key-bbbb"), updates=updates)

        async def go():
            await coordinator.start("Hi.")
            await _until(lambda: any(u.kind == "cooldown" for u in updates))
            skipped = coordinator.skip_credential()
            return skipped, await _wait(coordinator, PipelineStatus.COMPLETED, timeout=5)

        assert asyncio.run(go()) == ("...aaaa", PipelineStatus.COMPLETED)
        assert [cred for _, cred in endpoint.calls] == ["key-aaaa", "key-bbbb"]
        assert any(u.message == "Credential available, resuming..." for u in updates)

    def test_set_credentials_during_cooldown(self):
        """Swapped-in credentials are used by the very next attempt."""
        endpoint = ScriptedEndpoint([RateLimited("429", detail="Please retry in 30s")], default=SHORT_PCM)
        updates = []
        coordinator, _ = _coordinator(endpoint, updates=updates)

        async def go():
            await coordinator.start("Hi.")
            await _until(lambda: any(u.kind == "cooldown" for u in updates))
            count = coordinator.set_credentials(["key-cccc", " ", ""])
            return count, await _wait(coordinator, PipelineStatus.COMPLETED, timeout=5)

        assert asyncio.run(go()) == (1, PipelineStatus.COMPLETED)
        assert [cred for _, cred in endpoint.calls] == ["key-aaaa", "key-cccc"]
        assert coordinator.pool.credentials == ["key-cccc"]

    def test_set_credentials_rejects_empty(self):
        coordinator, _ = _coordinator(ScriptedEndpoint())
        with pytest.raises(InvalidInputError):
            coordinator.set_credentials(["", "  "])
        assert coordinator.pool.credentials == ["key-aaaa"]

    def test_set_rate_limit_releases_wait(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        updates = []
        coordinator, _ = _coordinator(endpoint, config=_config(rpm=1), updates=updates)

        async def go():
            await coordinator.start(TEXT5)
            await _until(lambda: any(u.kind == "waiting" for u in updates))
            coordinator.set_rate_limit(9)
            return await _wait(coordinator, PipelineStatus.COMPLETED, timeout=5)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED
        assert len(endpoint.calls) == 5
        assert coordinator.pool.limit == 9
        with pytest.raises(InvalidInputError):
            coordinator.set_rate_limit(0)

    def test_close_releases_endpoint(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)
        asyncio.run(coordinator.close())
        assert endpoint.closed


class TestFailures:
    """Segment failures stop the session."""

    def test_auth_error_is_fatal(self):
        endpoint = ScriptedEndpoint([AuthError("API key not valid")])
        updates = []
        coordinator, _ = _coordinator(endpoint, updates=updates)

        async def go():
            await coordinator.start("Hi.")
            return await _wait(coordinator, PipelineStatus.ERROR, PipelineStatus.PAUSED)

        assert asyncio.run(go()) == PipelineStatus.ERROR
        assert coordinator.segments[0].status == SegmentStatus.ERROR
        assert coordinator.error.code == "AUTH_ERROR"
        errors = [u for u in updates if u.kind == "error"]
        assert errors and errors[0].error["error"] == "AUTH_ERROR"

    def test_exhausted_retries_pause_then_resume(self):
        endpoint = ScriptedEndpoint([TransientError("down"), TransientError("down")], default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("Hi.")
            first = await _wait(coordinator, PipelineStatus.PAUSED, PipelineStatus.ERROR)
            assert coordinator.segments[0].error
            coordinator.resume()
            return first, await _wait(coordinator, PipelineStatus.COMPLETED)

        first, final = asyncio.run(go())
        assert first == PipelineStatus.PAUSED
        assert final == PipelineStatus.COMPLETED
        assert len(endpoint.calls) == 3
        assert coordinator.error is None

    def test_empty_audio_pauses(self):
        endpoint = ScriptedEndpoint([b""])
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("Hi.")
            return await _wait(coordinator, PipelineStatus.PAUSED, PipelineStatus.ERROR)

        assert asyncio.run(go()) == PipelineStatus.PAUSED
        assert "empty audio" in coordinator.segments[0].error

    def test_undecodable_audio_pauses(self):
        endpoint = ScriptedEndpoint([b"\x00\x01\x02"], default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("Hi.")
            first = await _wait(coordinator, PipelineStatus.PAUSED, PipelineStatus.ERROR)
            assert coordinator.error.code == "INVALID_REQUEST"
            assert "Undecodable audio" in coordinator.segments[0].error
            coordinator.resume()
            return first, await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == (PipelineStatus.PAUSED, PipelineStatus.COMPLETED)

    def test_rejected_request_pauses(self):
        endpoint = ScriptedEndpoint([InvalidRequestError("text instead of audio")])
        coordinator, _ = _coordinator(endpoint)

        async def go():
            await coordinator.start("Hi.")
            return await _wait(coordinator, PipelineStatus.PAUSED, PipelineStatus.ERROR)

        assert asyncio.run(go()) == PipelineStatus.PAUSED
        assert coordinator.segments[0].status == SegmentStatus.ERROR

    def test_broken_listener_does_not_kill_session(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint)

        def broken(update):
            raise RuntimeError("listener bug")

        coordinator.on_update = broken

        async def go():
            await coordinator.start("Hi.")
            return await _wait(coordinator, PipelineStatus.COMPLETED)

        assert asyncio.run(go()) == PipelineStatus.COMPLETED


class TestValidation:
    """Invalid input and invalid state."""

    def test_empty_text(self):
        coordinator, _ = _coordinator(ScriptedEndpoint())

        async def go():
            await coordinator.start("   \n ")

        with pytest.raises(InvalidInputError):
            asyncio.run(go())
        assert coordinator.status == PipelineStatus.IDLE

    def test_pause_when_idle(self):
        coordinator, _ = _coordinator(ScriptedEndpoint())
        with pytest.raises(InvalidStateError):
            coordinator.pause()

    def test_resume_when_idle(self):
        coordinator, _ = _coordinator(ScriptedEndpoint())
        with pytest.raises(InvalidStateError):
            coordinator.resume()

    def test_cancel_when_idle(self):
        coordinator, _ = _coordinator(ScriptedEndpoint())
        with pytest.raises(InvalidStateError):
            coordinator.cancel()

    def test_segment_transitions_guarded(self):
        seg = Segment(index=0, id="s-0", text="x")
        with pytest.raises(InvalidStateError):
            seg.advance(SegmentStatus.PLAYED)
        seg.advance(SegmentStatus.GENERATING)
        seg.advance(SegmentStatus.READY)
        seg.advance(SegmentStatus.PLAYING)
        seg.advance(SegmentStatus.PLAYED)
        with pytest.raises(InvalidStateError):
            seg.advance(SegmentStatus.PENDING)


class TestSnapshot:
    """Serializable session view."""

    def test_snapshot_shape(self):
        endpoint = ScriptedEndpoint(default=SHORT_PCM)
        coordinator, _ = _coordinator(endpoint, credentials=("key-aaaa", "key-bbbb"))

        async def go():
            await coordinator.start(TEXT5)
            await _wait(coordinator, PipelineStatus.COMPLETED)

        asyncio.run(go())
        snap = coordinator.snapshot()
        assert snap["status"] == "completed"
        assert snap["total"] == 5
        assert snap["progress"] == 100
        assert len(snap["segments"]) == 5
        assert snap["segments"][0]["status"] == "played"
        assert {c["credential"] for c in snap["credentials"]} == {"...aaaa", "...bbbb"}
        assert "key-aaaa" not in str(snap)

    def test_create_output_default_is_silent(self):
        assert isinstance(create_output(StreamConfig()), SilentOutput)
