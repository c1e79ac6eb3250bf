from __future__ import annotations

import json
from typing import Any

import httpx

from ..settings import settings

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class AIGenerationError(Exception):
    pass


def _mock_generate(prompt: str, structured: bool) -> Any:
    summary = " ".join(prompt.split())[:200]
    if structured:
        return {"summary": summary, "prompt_chars": len(prompt)}
    return f"[mock-ai] {summary}"


def _extract_text(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise AIGenerationError("model returned no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
    if not text.strip():
        raise AIGenerationError("model returned empty text")
    return text


class GeminiGenerator:
    def __init__(self, api_key: str, model: str, timeout_seconds: float = 30.0) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds

    def generate(self, prompt: str, *, structured: bool = False) -> Any:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if structured:
            body["generationConfig"] = {"responseMimeType": "application/json"}
        with httpx.Client(timeout=self.timeout_seconds) as client:
            response = client.post(
                f"{GEMINI_API_BASE}/{self.model}:generateContent",
                params={"key": self.api_key},
                json=body,
            )
        if response.status_code >= 400:
            raise AIGenerationError(f"ai provider returned status {response.status_code}")
        text = _extract_text(response.json())
        if not structured:
            return text
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise AIGenerationError("ai provider returned invalid JSON") from exc


class MockGenerator:
    def generate(self, prompt: str, *, structured: bool = False) -> Any:
        return _mock_generate(prompt, structured)


def build_ai_generator() -> GeminiGenerator | MockGenerator:
    if settings.ai_mode == "live":
        if not settings.gemini_api_key:
            raise AIGenerationError("AI live mode requires GEMINI_API_KEY")
        return GeminiGenerator(api_key=settings.gemini_api_key, model=settings.gemini_model)
    return MockGenerator()
