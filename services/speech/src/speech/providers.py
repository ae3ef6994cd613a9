from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel

WHISPER_URL = "https://api.openai.com/v1/audio/transcriptions"
GOOGLE_SPEECH_URL = "https://speech.googleapis.com/v1/speech:recognize"
WHISPER_CONFIDENCE = 0.95
GOOGLE_DEFAULT_CONFIDENCE = 0.9
FALLBACK_BYTES_PER_SECOND = 16000
FALLBACK_TRANSCRIPT = (
    "[Real-time transcription not configured. Set OPENAI_API_KEY or "
    "GOOGLE_SPEECH_API_KEY to enable audio transcription, or use text mode.]"
)
FALLBACK_NOTE = "To enable real transcription, add OPENAI_API_KEY to the environment."
LOGGER = logging.getLogger("prepmate.speech")


class SpeechProviderError(RuntimeError):
    pass


class TranscriptionResult(BaseModel):
    transcript: str
    confidence: float
    source: str
    duration: int | None = None
    note: str | None = None


@dataclass
class SpeechSettings:
    openai_api_key: str | None = None
    google_api_key: str | None = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> SpeechSettings:
        raw_timeout = os.getenv("SPEECH_PROVIDER_TIMEOUT_SECONDS", "").strip()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip() or None,
            google_api_key=os.getenv("GOOGLE_SPEECH_API_KEY", "").strip() or None,
            timeout_seconds=float(raw_timeout) if raw_timeout else 30.0,
        )


def audio_extension(mime_type: str) -> str:
    subtype = mime_type.split("/", 1)[-1].split(";", 1)[0].strip()
    return subtype or "webm"


def google_encoding(mime_type: str) -> str:
    return "WEBM_OPUS" if "webm" in mime_type else "LINEAR16"


def _decode_json(response: Any, provider: str) -> dict[str, Any]:
    if response.status_code >= 400:
        raise SpeechProviderError(f"{provider} responded with status {response.status_code}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise SpeechProviderError(f"{provider} returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise SpeechProviderError(f"{provider} returned an unexpected payload")
    return payload


async def transcribe_with_whisper(
    audio: bytes,
    mime_type: str,
    *,
    api_key: str,
    timeout: float,
) -> TranscriptionResult:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.request(
            method="POST",
            url=WHISPER_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            data={"model": "whisper-1", "language": "en"},
            files={"file": (f"audio.{audio_extension(mime_type)}", audio, mime_type)},
        )
    payload = _decode_json(response, "whisper")
    return TranscriptionResult(
        transcript=str(payload.get("text", "")),
        confidence=WHISPER_CONFIDENCE,
        source="openai-whisper",
    )


async def transcribe_with_google(
    audio: bytes,
    mime_type: str,
    *,
    api_key: str,
    timeout: float,
) -> TranscriptionResult | None:
    body = {
        "config": {
            "encoding": google_encoding(mime_type),
            "sampleRateHertz": 48000,
            "languageCode": "en-US",
            "enableAutomaticPunctuation": True,
            "model": "latest_long",
        },
        "audio": {"content": base64.b64encode(audio).decode("ascii")},
    }
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.request(
            method="POST",
            url=GOOGLE_SPEECH_URL,
            params={"key": api_key},
            json=body,
        )
    payload = _decode_json(response, "google")
    results = payload.get("results") or []
    if not isinstance(results, list):
        raise SpeechProviderError("google returned malformed results")
    transcripts: list[str] = []
    confidence: Any = None
    for result in results:
        if not isinstance(result, dict):
            raise SpeechProviderError("google returned malformed results")
        alternatives = result.get("alternatives") or []
        if not isinstance(alternatives, list) or not all(
            isinstance(alternative, dict) for alternative in alternatives
        ):
            raise SpeechProviderError("google returned malformed alternatives")
        if alternatives:
            transcripts.append(str(alternatives[0].get("transcript", "")))
            if confidence is None:
                confidence = alternatives[0].get("confidence")
    transcript = "\n".join(transcripts).strip()
    if not transcript:
        return None
    if not isinstance(confidence, (int, float)) or not confidence:
        confidence = GOOGLE_DEFAULT_CONFIDENCE
    return TranscriptionResult(
        transcript=transcript,
        confidence=float(confidence),
        source="google-speech",
    )


def fallback_result(audio_size: int) -> TranscriptionResult:
    return TranscriptionResult(
        transcript=FALLBACK_TRANSCRIPT,
        confidence=0.0,
        source="fallback",
        duration=max(1, round(audio_size / FALLBACK_BYTES_PER_SECOND)),
        note=FALLBACK_NOTE,
    )


async def transcribe(audio: bytes, mime_type: str, settings: SpeechSettings) -> TranscriptionResult:
    """Try each configured provider in turn and fall back to a placeholder transcript."""
    if settings.openai_api_key:
        try:
            return await transcribe_with_whisper(
                audio,
                mime_type,
                api_key=settings.openai_api_key,
                timeout=settings.timeout_seconds,
            )
        except (httpx.HTTPError, SpeechProviderError) as exc:
            LOGGER.warning(
                json.dumps(
                    {"event": "stt_provider_failed", "provider": "whisper", "error": str(exc)}
                )
            )

    if settings.google_api_key:
        try:
            result = await transcribe_with_google(
                audio,
                mime_type,
                api_key=settings.google_api_key,
                timeout=settings.timeout_seconds,
            )
        except (httpx.HTTPError, SpeechProviderError) as exc:
            LOGGER.warning(
                json.dumps(
                    {"event": "stt_provider_failed", "provider": "google", "error": str(exc)}
                )
            )
        else:
            if result is not None:
                return result
            LOGGER.info(json.dumps({"event": "stt_empty_transcript", "provider": "google"}))

    return fallback_result(len(audio))
