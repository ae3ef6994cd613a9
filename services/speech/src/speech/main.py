from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, HTTPException, Request

from speech.providers import SpeechSettings, TranscriptionResult, transcribe

DEFAULT_AUDIO_MIME = "audio/webm"
LOGGER = logging.getLogger("prepmate.speech")

app = FastAPI(title="PrepMate Speech", version="1.0.0")
SETTINGS = SpeechSettings.from_env()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "speech"}


@app.post("/stt", response_model=TranscriptionResult)
async def speech_to_text(request: Request) -> TranscriptionResult:
    audio = await request.body()
    if not audio:
        raise HTTPException(status_code=400, detail="No audio provided")
    mime_type = request.headers.get("x-audio-mime") or DEFAULT_AUDIO_MIME

    started = time.perf_counter()
    result = await transcribe(audio, mime_type, SETTINGS)
    LOGGER.info(
        json.dumps(
            {
                "event": "stt_complete",
                "source": result.source,
                "audio_bytes": len(audio),
                "mime_type": mime_type,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            }
        )
    )
    return result
