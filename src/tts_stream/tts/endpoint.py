"""
Remote Speech Synthesis Endpoints.

An endpoint turns one prompt into raw PCM16 mono audio using one
credential, and classifies every failure into the error taxonomy
(tts/errors.py). Retrying, waiting and credential choice are *not* the
endpoint's business; that is the SynthesisClient's job.

Implementations:
    - SpeechEndpoint: Abstract interface
    - GeminiSpeechEndpoint: Gemini TTS over the generateContent REST call

Failure classification (Gemini):
    401, 403, "API key not valid"  -> AuthError
    400, 404                       -> InvalidRequestError
    429, 503                       -> RateLimited (body kept for retry hints)
    other 5xx, timeouts, transport -> TransientError
    text instead of audio          -> InvalidRequestError
    no candidates                  -> TransientError
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from tts_stream.core.config import EndpointConfig
from tts_stream.core.logging import debug, get_logger, verbose
from tts_stream.tts.credentials import mask_credential
from tts_stream.tts.errors import (
    AuthError,
    InvalidRequestError,
    RateLimited,
    TransientError,
)
from tts_stream.tts.presets import build_prompt

_LOG = get_logger("tts-stream.endpoint")


@dataclass
class SynthesisRequest:
    """
    One segment to synthesize.

    Attributes:
        text: Segment text.
        voice: Prebuilt voice name.
        style: Style instruction (already resolved from a preset label).
        language: Language code (en, hi, hinglish).
        prior_context: Tail of the previous segment, for continuity.
    """
    text: str
    voice: str = "Puck"
    style: str = ""
    language: str = "en"
    prior_context: str = ""

    @property
    def prompt(self) -> str:
        return build_prompt(self.text, self.language, self.style, self.prior_context)


class SpeechEndpoint:
    """
    Abstract remote synthesis endpoint.

    Subclasses implement ``synthesize`` and may override ``aclose``.
    """

    name: str = "base"

    async def synthesize(self, request: SynthesisRequest, credential: str) -> bytes:
        """
        Synthesize one request with one credential.

        Returns:
            Raw little-endian PCM16 mono audio bytes.

        Raises:
            AuthError, InvalidRequestError, RateLimited, TransientError
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def _error_message(body: str) -> str:
    """Best-effort ``error.message`` from a Google API error body."""
    try:
        payload = json.loads(body)
    except ValueError:
        return body.strip()[:500]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
    return body.strip()[:500]


def classify_http_error(status_code: int, body: str) -> Exception:
    """Map a failed HTTP response onto the error taxonomy."""
    message = _error_message(body)
    details = {"status_code": status_code}

    if status_code == 429 or status_code == 503:
        # Keep the raw body: the retry hint may be in RetryInfo, not the message
        return RateLimited(f"Rate limited ({status_code}): {message}", detail=f"{message}\n{body}", details=details)
    if status_code in (401, 403) or "API key not valid" in message:
        return AuthError(f"Credential rejected ({status_code}): {message}", details=details)
    if status_code in (400, 404):
        return InvalidRequestError(f"Request rejected ({status_code}): {message}", details=details)
    return TransientError(f"Endpoint error ({status_code}): {message}", details=details)


def extract_audio(payload: Dict[str, Any]) -> bytes:
    """
    Decoded PCM bytes from a generateContent response.

    Raises:
        TransientError: If the response carries no candidates or parts.
        InvalidRequestError: If the model answered with text, or the
            inline audio is not valid base64.
    """
    candidates = payload.get("candidates") or []
    if not candidates:
        raise TransientError("No candidates returned from endpoint")

    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    if not parts:
        raise TransientError("No content parts returned")

    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            try:
                return base64.b64decode(inline["data"], validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidRequestError(f"Audio payload is not valid base64: {e}") from e

    for part in parts:
        if part.get("text"):
            raise InvalidRequestError(
                f'Model returned text instead of audio: "{part["text"][:200]}". Try adjusting your prompt.'
            )
    raise InvalidRequestError("No audio data found in response")


class GeminiSpeechEndpoint(SpeechEndpoint):
    """
    Gemini TTS via ``POST {base_url}/models/{model}:generateContent``.

    The response holds base64 PCM16 mono at 24 kHz in
    ``candidates[0].content.parts[].inlineData.data``.

    Args:
        config: Model, base URL and timeout.
        client: Optional pre-built httpx.AsyncClient (tests inject one
            backed by httpx.MockTransport).
    """

    name = "gemini"

    def __init__(self, config: Optional[EndpointConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or EndpointConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"{self.config.base_url}/models/{self.config.model}:generateContent"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self._client

    def build_body(self, request: SynthesisRequest) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": request.voice},
                    },
                },
            },
        }

    async def synthesize(self, request: SynthesisRequest, credential: str) -> bytes:
        client = self._get_client()
        debug(_LOG, "endpoint_request", model=self.config.model, voice=request.voice,
              chars=len(request.text), credential=mask_credential(credential))

        try:
            response = await client.post(
                self.url,
                json=self.build_body(request),
                headers={"x-goog-api-key": credential},
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Endpoint timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Endpoint unreachable: {e}") from e

        if response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientError(f"Endpoint returned malformed JSON: {e}") from e

        pcm = extract_audio(payload)
        verbose(_LOG, "endpoint_audio", bytes=len(pcm), credential=mask_credential(credential))
        return pcm

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
