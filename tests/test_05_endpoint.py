"""
Tests for the Gemini endpoint adapter.

The HTTP layer is replaced by httpx.MockTransport, so these tests run
without network access.

Tests cover:
- Request body, URL and credential header
- Audio extraction from inlineData
- HTTP status classification (401/403/400/404/429/503/500)
- Text-instead-of-audio, missing candidates, malformed JSON
- Timeouts and transport errors
- Prompt construction
"""
import asyncio
import base64
import json

import httpx
import pytest

from tts_stream.core.config import EndpointConfig
from tts_stream.tts.endpoint import (
    GeminiSpeechEndpoint,
    SynthesisRequest,
    classify_http_error,
    extract_audio,
)
from tts_stream.tts.errors import AuthError, InvalidRequestError, RateLimited, TransientError
from tts_stream.tts.presets import LANGUAGE_DIRECTIVES, build_prompt, resolve_style

PCM = b"\x01\x00\x02\x00\x03\x00"


def _audio_payload(pcm: bytes = PCM) -> dict:
    return {
        "candidates": [{
            "content": {"parts": [{"inlineData": {"mimeType": "audio/L16;rate=24000",
                                                   "data": base64.b64encode(pcm).decode("ascii")}}]},
        }],
    }


def _run(handler, request=None, credential="secret-key-1234"):
    """Call a GeminiSpeechEndpoint whose HTTP client is backed by ``handler``."""
    config = EndpointConfig(model="test-model", base_url="https://example.test/v1beta")

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            endpoint = GeminiSpeechEndpoint(config, client=client)
            return await endpoint.synthesize(request or SynthesisRequest(text="Hello."), credential)

    return asyncio.run(go())


class TestRequest:
    """What goes over the wire."""

    def test_url_header_and_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers.get("x-goog-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_audio_payload())

        request = SynthesisRequest(text="Hello there.", voice="Kore", style="Whisper this", language="en")
        assert _run(handler, request) == PCM

        assert seen["url"] == "https://example.test/v1beta/models/test-model:generateContent"
        assert seen["key"] == "secret-key-1234"
        body = seen["body"]
        assert body["generationConfig"]["responseModalities"] == ["AUDIO"]
        voice = body["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"]
        assert voice == "Kore"
        prompt = body["contents"][0]["parts"][0]["text"]
        assert "Hello there." in prompt
        assert "Style instruction: Whisper this" in prompt

    def test_credential_not_in_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, json=_audio_payload())

        _run(handler)
        assert "secret-key-1234" not in seen["url"]


class TestClassification:
    """HTTP failures map onto the error taxonomy."""

    @pytest.mark.parametrize("status,exc", [
        (401, AuthError),
        (403, AuthError),
        (400, InvalidRequestError),
        (404, InvalidRequestError),
        (429, RateLimited),
        (503, RateLimited),
        (500, TransientError),
        (502, TransientError),
    ])
    def test_status_codes(self, status, exc):
        def handler(request):
            return httpx.Response(status, json={"error": {"message": "boom"}})

        with pytest.raises(exc) as info:
            _run(handler)
        assert info.value.details["status_code"] == status

    def test_invalid_key_message_is_auth_error(self):
        err = classify_http_error(400, json.dumps({"error": {"message": "API key not valid. Please pass a valid API key."}}))
        assert isinstance(err, AuthError)

    def test_rate_limit_keeps_retry_hint(self):
        body = json.dumps({"error": {
            "message": "Quota exceeded",
            "details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "17s"}],
        }})
        err = classify_http_error(429, body)
        assert isinstance(err, RateLimited)
        assert "retryDelay" in err.detail

    def test_plain_text_body(self):
        err = classify_http_error(500, "upstream exploded")
        assert isinstance(err, TransientError)
        assert "upstream exploded" in err.message

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientError, match="timed out"):
            _run(handler)

    def test_connect_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientError, match="unreachable"):
            _run(handler)

    def test_malformed_json_is_transient(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        with pytest.raises(TransientError, match="malformed"):
            _run(handler)


class TestExtractAudio:
    """Pulling PCM out of a generateContent response."""

    def test_inline_data(self):
        assert extract_audio(_audio_payload()) == PCM

    def test_snake_case_inline_data(self):
        payload = {"candidates": [{"content": {"parts": [
            {"inline_data": {"data": base64.b64encode(PCM).decode("ascii")}},
        ]}}]}
        assert extract_audio(payload) == PCM

    def test_no_candidates(self):
        with pytest.raises(TransientError):
            extract_audio({"candidates": []})

    def test_no_parts(self):
        with pytest.raises(TransientError):
            extract_audio({"candidates": [{"content": {"parts": []}}]})

    def test_text_instead_of_audio(self):
        payload = {"candidates": [{"content": {"parts": [{"text": "I cannot read that."}]}}]}
        with pytest.raises(InvalidRequestError, match="text instead of audio"):
            extract_audio(payload)

    def test_bad_base64(self):
        payload = {"candidates": [{"content": {"parts": [{"inlineData": {"data": "!!!not-base64!!!"}}]}}]}
        with pytest.raises(InvalidRequestError):
            extract_audio(payload)


class TestPrompt:
    """Prompt construction from voice parameters."""

    def test_language_directive(self):
        prompt = build_prompt("Namaste", language="hi")
        assert prompt.startswith(LANGUAGE_DIRECTIVES["hi"])
        assert prompt.endswith("Text to speak:\nNamaste")

    def test_unknown_language_falls_back_to_english(self):
        assert build_prompt("Hi", language="xx").startswith(LANGUAGE_DIRECTIVES["en"])

    def test_prior_context_included(self):
        prompt = build_prompt("Second part.", prior_context="end of first part.")
        assert "end of first part." in prompt
        assert prompt.index("end of first part.") < prompt.index("Text to speak:")

    def test_no_style_line_without_style(self):
        assert "Style instruction" not in build_prompt("Hi")

    def test_resolve_style_preset(self):
        assert resolve_style("storyteller").startswith("Read this slowly")
        assert resolve_style("  Speak like a pirate ") == "Speak like a pirate"
        assert resolve_style(None) == ""

    def test_request_prompt_property(self):
        request = SynthesisRequest(text="Go.", language="hinglish", prior_context="Ready.")
        assert request.prompt == build_prompt("Go.", "hinglish", "", "Ready.")
