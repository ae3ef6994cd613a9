from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import google.generativeai as genai

DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
LOGGER = logging.getLogger("prepmate.interview")

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


class LlmError(RuntimeError):
    pass


class LlmUnavailableError(LlmError):
    pass


class LlmResponseError(LlmError):
    pass


class LlmClient(Protocol):
    model_name: str

    def generate(self, prompt: str) -> str: ...


class GeminiClient:
    def __init__(self, api_key: str, model_name: str = DEFAULT_GEMINI_MODEL) -> None:
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self._model = genai.GenerativeModel(model_name)

    def generate(self, prompt: str) -> str:
        try:
            response = self._model.generate_content(prompt)
            text = response.text
        except Exception as exc:
            raise LlmError(f"Gemini request failed: {exc}") from exc
        if not text or not text.strip():
            raise LlmResponseError("Gemini returned an empty response.")
        return text


class DisabledLlmClient:
    model_name = "disabled"

    def generate(self, prompt: str) -> str:
        raise LlmUnavailableError("GEMINI_API_KEY is not configured.")


def build_llm_client(api_key: str | None, model_name: str | None = None) -> LlmClient:
    if not api_key:
        LOGGER.warning(json.dumps({"event": "llm_disabled", "reason": "missing api key"}))
        return DisabledLlmClient()
    return GeminiClient(api_key, model_name or DEFAULT_GEMINI_MODEL)


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text).strip()


def extract_json_object(text: str) -> dict[str, Any]:
    match = _OBJECT_RE.search(strip_code_fences(text))
    if match is None:
        raise LlmResponseError("No JSON object found in model output.")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise LlmResponseError(f"Model output is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise LlmResponseError("Model output is not a JSON object.")
    return parsed


def extract_json_array(text: str) -> list[Any]:
    match = _ARRAY_RE.search(strip_code_fences(text))
    if match is None:
        raise LlmResponseError("No JSON array found in model output.")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise LlmResponseError(f"Model output is not valid JSON: {exc}") from exc
    if not isinstance(parsed, list):
        raise LlmResponseError("Model output is not a JSON array.")
    return parsed
