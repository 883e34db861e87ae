"""
Session API Routes.

HTTP front end for the single streaming session of this process.

Endpoints:
    GET  /health                          - Health check
    GET  /v1/voices                       - Voices, style presets, languages
    POST /v1/session                      - Start a session (202)
    GET  /v1/session                      - Session snapshot
    POST /v1/session/pause                - Pause playback and fetching
    POST /v1/session/resume               - Resume (retries failed segments)
    POST /v1/session/cancel               - Abandon generation, keep audio
    POST /v1/session/stop                 - Hard stop, back to idle
    POST /v1/session/skip-credential      - Cool down the credential in use
    PUT  /v1/session/credentials          - Swap keys and/or change the per-key limit
    GET  /v1/session/audio.wav            - Export generated audio

Error Handling:
    All errors are returned as JSON with standardized format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>"
    }

    HTTP status codes are mapped from error codes:
        - INVALID_INPUT -> 400 Bad Request
        - INVALID_STATE -> 409 Conflict
        - NO_CREDENTIALS -> 503 Service Unavailable
        - anything else -> 500 Internal Server Error
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from tts_stream.api.dependencies import get_coordinator
from tts_stream.api.schemas import (
    CredentialsResponse,
    CredentialsUpdate,
    SessionAck,
    SessionRequest,
    SkipCredentialResponse,
)
from tts_stream.core.logging import error, get_logger, info
from tts_stream.services.pipeline import PipelineCoordinator, VoiceParams
from tts_stream.tts.errors import (
    ErrorCode,
    InvalidInputError,
    InvalidStateError,
    NoCredentialsAvailable,
    TTSStreamError,
)
from tts_stream.tts.presets import (
    LANGUAGE_DIRECTIVES,
    LANGUAGE_LABELS,
    STYLE_PRESETS,
    VOICES,
    find_voice,
)

router = APIRouter()

_LOG = get_logger("tts-stream.api")

_STATUS_MAP = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.NO_CREDENTIALS: 503,
}


def _error_response(err: TTSStreamError) -> JSONResponse:
    """Standard JSON error envelope with the mapped HTTP status."""
    return JSONResponse(status_code=_STATUS_MAP.get(err.code, 500), content=err.to_dict())


def _ack(coordinator: PipelineCoordinator) -> SessionAck:
    return SessionAck(
        session_id=coordinator.session_id,
        status=coordinator.status.value,
        message=coordinator.message,
    )


def _voice_params(req: SessionRequest, coordinator: PipelineCoordinator) -> VoiceParams:
    """
    Voice parameters for a request, defaults from the coordinator config.

    Raises:
        InvalidInputError: For an unknown voice or language.
    """
    defaults = coordinator.config.voice
    name = req.voice or defaults.voice
    voice = find_voice(name)
    if voice is None:
        raise InvalidInputError(f"Unknown voice: {name}", details={"voices": [v.name for v in VOICES]})

    language = (req.language or defaults.language).lower()
    if language not in LANGUAGE_DIRECTIVES:
        raise InvalidInputError(f"Unknown language: {language}", details={"languages": list(LANGUAGE_DIRECTIVES)})

    style = req.style if req.style is not None else defaults.style
    return VoiceParams(voice=voice.name, style=style, language=language)


@router.get("/health")
async def health(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    """
    Health check endpoint for load balancers and probes.

    ``status`` is "degraded" when no credentials are configured: the
    process is up but cannot synthesize anything.
    """
    credentials = len(coordinator.pool)
    return {
        "status": "healthy" if credentials else "degraded",
        "session": coordinator.status.value,
        "credentials": credentials,
        "output": type(coordinator.scheduler.output).__name__,
    }


@router.get("/v1/voices")
async def voices():
    return {
        "voices": [{"name": v.name, "gender": v.gender, "description": v.description} for v in VOICES],
        "styles": [{"label": label, "instruction": text} for label, text in STYLE_PRESETS.items()],
        "languages": [{"code": code, "label": label} for code, label in LANGUAGE_LABELS.items()],
    }


@router.post("/v1/session", status_code=202)
async def start_session(
    req: SessionRequest,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
):
    """
    Start reading ``req.text``, replacing any running session.

    Returns immediately with the session snapshot; progress is polled
    with GET /v1/session.
    """
    try:
        if len(coordinator.pool) == 0:
            raise NoCredentialsAvailable()
        voice = _voice_params(req, coordinator)
        await coordinator.start(req.text, voice)
    except TTSStreamError as e:
        info(_LOG, "session_rejected", code=e.code, message=e.message)
        return _error_response(e)
    return coordinator.snapshot()


@router.get("/v1/session")
async def session_snapshot(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    return coordinator.snapshot()


@router.post("/v1/session/pause", response_model=SessionAck)
async def pause_session(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    try:
        coordinator.pause()
    except InvalidStateError as e:
        return _error_response(e)
    return _ack(coordinator)


@router.post("/v1/session/resume", response_model=SessionAck)
async def resume_session(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    try:
        coordinator.resume()
    except InvalidStateError as e:
        return _error_response(e)
    return _ack(coordinator)


@router.post("/v1/session/cancel", response_model=SessionAck)
async def cancel_session(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    try:
        coordinator.cancel()
    except InvalidStateError as e:
        return _error_response(e)
    return _ack(coordinator)


@router.post("/v1/session/stop", response_model=SessionAck)
async def stop_session(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    await coordinator.stop()
    return _ack(coordinator)


@router.post("/v1/session/skip-credential", response_model=SkipCredentialResponse)
async def skip_credential(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    try:
        masked = coordinator.skip_credential()
    except NoCredentialsAvailable as e:
        return _error_response(e)
    return SkipCredentialResponse(skipped=masked)


@router.put("/v1/session/credentials", response_model=CredentialsResponse)
async def update_credentials(
    req: CredentialsUpdate,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
):
    """
    Replace the API keys and/or the per-key limit, also mid-session.

    A cooldown or wait in progress is re-evaluated at once.
    """
    if req.keys is None and req.requests_per_minute is None:
        return _error_response(InvalidInputError("Nothing to update"))
    try:
        if req.requests_per_minute is not None:
            coordinator.set_rate_limit(req.requests_per_minute)
        if req.keys is not None:
            coordinator.set_credentials(req.keys)
    except InvalidInputError as e:
        return _error_response(e)

    info(_LOG, "credentials_replaced", credentials=len(coordinator.pool), rpm=coordinator.pool.limit)
    return CredentialsResponse(credentials=len(coordinator.pool), requests_per_minute=coordinator.pool.limit)


@router.get("/v1/session/audio.wav", response_class=Response)
async def export_audio(coordinator: PipelineCoordinator = Depends(get_coordinator)):
    """
    Everything generated so far, in text order, as a WAV file.

    Returns 409 when no segment has been generated yet.
    """
    try:
        wav = coordinator.export_wav()
    except Exception as e:
        error(_LOG, "export_failed", error=str(e))
        return _error_response(TTSStreamError("Audio export failed", ErrorCode.INTERNAL_ERROR))
    if wav is None:
        return _error_response(InvalidStateError("No audio generated yet"))

    headers = {
        "X-Session-Id": coordinator.session_id,
        "X-Sample-Rate": str(coordinator.scheduler.sample_rate),
        "X-Bytes": str(len(wav)),
    }
    return Response(content=wav, media_type="audio/wav", headers=headers)
