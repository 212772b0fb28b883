"""HTTP client for the generative text service (Gemini `generateContent` API)."""

from __future__ import annotations

import json
from dataclasses import dataclass

import requests
from flask import current_app

from .engine_settings import EngineSettings, get_engine_settings


class MissingCredential(RuntimeError):
    """Raised before any call when no API key is configured."""


class UpstreamError(Exception):
    """Raised when the generative service answers with an error or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AIResponse:
    text: str
    model: str
    tokens_used: int = 0


@dataclass
class AIClient:
    api_key: str
    api_base: str
    connect_timeout: int = 15
    read_timeout: int = 90

    def generate(
        self,
        *,
        model: str,
        system_instruction: str,
        prompt: str,
        max_output_tokens: int,
        temperature: float = 0.7,
    ) -> AIResponse:
        if not self.api_key:
            raise MissingCredential("AI_API_KEY / GEMINI_API_KEY is not configured")

        payload = {
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        headers = {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }
        try:
            response = requests.post(
                f"{self.api_base}/models/{model}:generateContent",
                headers=headers,
                data=json.dumps(payload),
                timeout=(self.connect_timeout, self.read_timeout),
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"{model} unavailable: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamError(
                f"{model} returned {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        body = response.json()
        return AIResponse(
            text=_extract_text(body),
            model=model,
            tokens_used=int((body.get("usageMetadata") or {}).get("totalTokenCount") or 0),
        )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return f"{error.get('status', '')} {error.get('message', '')}".strip()
    return str(body)[:300]


def _extract_text(body: dict) -> str:
    candidates = body.get("candidates") or []
    if not candidates:
        raise UpstreamError("Response contained no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


def build_ai_client(settings: EngineSettings) -> AIClient:
    return AIClient(
        api_key=settings.api_key,
        api_base=settings.api_base,
        connect_timeout=settings.connect_timeout_sec,
        read_timeout=settings.read_timeout_sec,
    )


def get_ai_client() -> AIClient:
    app = current_app
    client = app.extensions.get("ai_client")
    if client is None:
        client = build_ai_client(get_engine_settings())
        app.extensions["ai_client"] = client
    return client
