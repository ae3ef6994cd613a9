from __future__ import annotations

import base64
from typing import Any

import httpx
import pytest
from speech import providers
from speech.providers import (
    GOOGLE_SPEECH_URL,
    WHISPER_URL,
    SpeechSettings,
    audio_extension,
    fallback_result,
    google_encoding,
    transcribe,
)

pytestmark = pytest.mark.unit

class StubResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        return self._payload

class RoutingAsyncClient:
    """Answers each provider URL from a table; exceptions in the table are raised."""

    def __init__(self, routes: dict[str, Any], calls: list[dict[str, Any]]) -> None:
        self.routes = routes
        self.calls = calls

    async def __aenter__(self) -> RoutingAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(self, method: str, url: str, **kwargs: Any) -> StubResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.routes[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

def install_routes(monkeypatch: pytest.MonkeyPatch, routes: dict[str, Any]) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        providers.httpx,
        "AsyncClient",
        lambda *_, **__: RoutingAsyncClient(routes=routes, calls=calls),
    )
    return calls

def both_keys() -> SpeechSettings:
    return SpeechSettings(openai_api_key="sk-test", google_api_key="g-test", timeout_seconds=5.0)

def test_mime_helpers() -> None:
    assert audio_extension("audio/webm;codecs=opus") == "webm"
    assert audio_extension("audio/wav") == "wav"
    assert audio_extension("") == "webm"
    assert google_encoding("audio/webm") == "WEBM_OPUS"
    assert google_encoding("audio/wav") == "LINEAR16"

def test_fallback_duration_is_at_least_one_second() -> None:
    assert fallback_result(10).duration == 1
    assert fallback_result(160000).duration == 10
    assert fallback_result(10).note

@pytest.mark.asyncio
async def test_whisper_is_tried_first(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_routes(
        monkeypatch,
        {WHISPER_URL: StubResponse(200, {"text": "Hello there"})},
    )

    result = await transcribe(b"audio-bytes", "audio/webm", both_keys())

    assert result.transcript == "Hello there"
    assert result.confidence == 0.95
    assert result.source == "openai-whisper"
    assert len(calls) == 1
    assert calls[0]["headers"] == {"Authorization": "Bearer sk-test"}
    assert calls[0]["data"]["model"] == "whisper-1"

@pytest.mark.asyncio
async def test_google_used_after_whisper_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    request = httpx.Request("POST", WHISPER_URL)
    calls = install_routes(
        monkeypatch,
        {
            WHISPER_URL: httpx.ConnectError("connection refused", request=request),
            GOOGLE_SPEECH_URL: StubResponse(
                200,
                {
                    "results": [
                        {"alternatives": [{"transcript": "First part", "confidence": 0.82}]},
                        {"alternatives": [{"transcript": "second part"}]},
                    ]
                },
            ),
        },
    )

    result = await transcribe(b"audio-bytes", "audio/webm", both_keys())

    assert result.source == "google-speech"
    assert result.transcript == "First part\nsecond part"
    assert result.confidence == 0.82
    google_call = calls[1]
    assert google_call["params"] == {"key": "g-test"}
    assert google_call["json"]["config"]["encoding"] == "WEBM_OPUS"
    assert google_call["json"]["audio"]["content"] == base64.b64encode(b"audio-bytes").decode()

@pytest.mark.asyncio
async def test_whisper_error_status_falls_through(monkeypatch: pytest.MonkeyPatch) -> None:
    install_routes(
        monkeypatch,
        {
            WHISPER_URL: StubResponse(401, {"error": {"message": "bad key"}}),
            GOOGLE_SPEECH_URL: StubResponse(
                200,
                {"results": [{"alternatives": [{"transcript": "Recovered"}]}]},
            ),
        },
    )

    result = await transcribe(b"audio-bytes", "audio/wav", both_keys())

    assert result.source == "google-speech"
    assert result.confidence == 0.9

@pytest.mark.asyncio
async def test_empty_google_transcript_uses_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    install_routes(monkeypatch, {GOOGLE_SPEECH_URL: StubResponse(200, {"results": []})})

    result = await transcribe(b"x" * 32000, "audio/webm", SpeechSettings(google_api_key="g-test"))

    assert result.source == "fallback"
    assert result.confidence == 0.0
    assert result.duration == 2

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"results": ["not-an-object"]},
        {"results": [{"alternatives": ["text"]}]},
        {"results": {"alternatives": []}},
    ],
)
async def test_malformed_google_payload_uses_fallback(
    monkeypatch: pytest.MonkeyPatch,
    payload: dict[str, Any],
) -> None:
    install_routes(monkeypatch, {GOOGLE_SPEECH_URL: StubResponse(200, payload)})

    result = await transcribe(b"x" * 16000, "audio/webm", SpeechSettings(google_api_key="g-test"))

    assert result.source == "fallback"

@pytest.mark.asyncio
async def test_no_providers_means_no_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = install_routes(monkeypatch, {})

    result = await transcribe(b"x", "audio/webm", SpeechSettings())

    assert result.source == "fallback"
    assert calls == []

def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", " sk-env ")
    monkeypatch.setenv("GOOGLE_SPEECH_API_KEY", "")
    monkeypatch.setenv("SPEECH_PROVIDER_TIMEOUT_SECONDS", "12.5")

    settings = SpeechSettings.from_env()

    assert settings.openai_api_key == "sk-env"
    assert settings.google_api_key is None
    assert settings.timeout_seconds == 12.5
