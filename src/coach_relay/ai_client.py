from __future__ import annotations

import base64
import random
import time
from dataclasses import dataclass

import requests
from loguru import logger

from .settings import settings


class AIClientError(RuntimeError):
    pass


@dataclass
class MediaPart:
    data: bytes
    mime_type: str


class GeminiClient:
    """``generate_text(system_prompt, user_text, media)`` over generateContent.

    Two request shapes are tried: the native ``system_instruction`` body, then
    a single user turn with the prompt inlined for models that reject system
    instructions.  Each shape gets a bounded, jittered retry budget.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: int | None = None,
        max_retries: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.google_ai_api_key
        self.model = model or settings.google_ai_model
        self.base_url = settings.google_ai_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.gemini_timeout_seconds
        self.max_retries = settings.gemini_max_retries if max_retries is None else max_retries
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.api_key.strip())

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        # OAuth access tokens go in the header, plain API keys in the query
        if self.api_key.startswith("ya29."):
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            headers["x-goog-api-key"] = self.api_key
        return headers

    def _endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def _media_parts(media: MediaPart | None) -> list[dict]:
        if media is None:
            return []
        return [
            {
                "inline_data": {
                    "mime_type": media.mime_type,
                    "data": base64.b64encode(media.data).decode("ascii"),
                }
            }
        ]

    def _request_bodies(self, system_prompt: str, user_text: str, media: MediaPart | None) -> list[dict]:
        media_parts = self._media_parts(media)
        native = {
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_text}, *media_parts]}],
        }
        inlined = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": f"{system_prompt}\n\n{user_text}".strip()}, *media_parts],
                }
            ],
        }
        return [native, inlined] if system_prompt else [inlined]

    @staticmethod
    def _extract_text(payload: dict) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            return ""
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        chunks = [str(part.get("text", "")) for part in parts if isinstance(part, dict)]
        return "\n".join(chunk for chunk in chunks if chunk).strip()

    def _backoff(self, attempt: int) -> float:
        base = settings.gemini_retry_base_delay_seconds * (2 ** (attempt - 1))
        return base * (0.5 + random.random())

    def generate_text(self, system_prompt: str, user_text: str, media: MediaPart | None = None) -> str:
        if not self.is_configured():
            raise AIClientError("GOOGLE_AI_API_KEY is not configured")

        user_text = (user_text or "")[: settings.gemini_max_input_chars]
        attempts_per_shape = self.max_retries + 1
        last_error: Exception | None = None

        for shape_idx, body in enumerate(self._request_bodies(system_prompt, user_text, media)):
            for attempt in range(1, attempts_per_shape + 1):
                start = time.perf_counter()
                try:
                    response = self.session.post(
                        self._endpoint(),
                        headers=self._headers(),
                        json=body,
                        timeout=self.timeout_seconds,
                    )
                except requests.RequestException as exc:
                    last_error = exc
                    logger.warning("Gemini request failed shape={} attempt {}/{}: {}",
                                   shape_idx, attempt, attempts_per_shape, exc)
                else:
                    status = response.status_code
                    if status == 200:
                        text = self._extract_text(response.json() or {})
                        logger.debug("Gemini {} answered in {:.1f}s ({} chars)",
                                     self.model, time.perf_counter() - start, len(text))
                        if text:
                            return text
                        last_error = AIClientError("Gemini returned no candidate text")
                        break
                    last_error = AIClientError(f"Gemini HTTP {status}: {response.text[:300]}")
                    logger.warning("Gemini HTTP {} shape={} attempt {}/{}", status, shape_idx, attempt, attempts_per_shape)
                    if status in (400, 404):
                        # request shape or model rejected; retrying the same body will not help
                        break
                    if 400 < status < 500 and status != 429:
                        raise last_error

                if attempt < attempts_per_shape:
                    time.sleep(self._backoff(attempt))

        raise AIClientError(f"Gemini generation failed after retries: {last_error}") from last_error
