from __future__ import annotations

import base64
import hashlib
import hmac
import time

import requests
from loguru import logger

from .settings import settings


class LineApiError(RuntimeError):
    pass


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """HMAC-SHA256 of the raw request body, base64, as sent in X-Line-Signature."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


class LineClient:
    def __init__(self, access_token: str | None = None, session: requests.Session | None = None) -> None:
        self.access_token = access_token if access_token is not None else settings.line_channel_access_token
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.access_token.strip())

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def reply(self, reply_token: str, text: str) -> bool:
        payload = {
            "replyToken": reply_token,
            "messages": [{"type": "text", "text": text[: settings.line_max_reply_chars]}],
        }
        try:
            response = self.session.post(
                f"{settings.line_api_base_url}/v2/bot/message/reply",
                headers={**self._headers(), "Content-Type": "application/json"},
                json=payload,
                timeout=settings.line_timeout_seconds,
            )
            response.raise_for_status()
            return True
        except requests.RequestException as exc:
            # reply tokens are single-use, so a failed reply is not retried
            logger.error("LINE reply failed: {}", exc)
            return False

    def download_content(self, message_id: str) -> bytes:
        url = f"{settings.line_data_base_url}/v2/bot/message/{message_id}/content"
        last_exc: Exception | None = None

        for attempt in range(1, settings.line_max_retries + 1):
            try:
                response = self.session.get(url, headers=self._headers(), timeout=settings.line_media_timeout_seconds)
                response.raise_for_status()
                return response.content
            except requests.RequestException as exc:
                last_exc = exc
                logger.warning(
                    "LINE content download failed attempt {}/{}: {}",
                    attempt,
                    settings.line_max_retries,
                    exc,
                )
                if attempt < settings.line_max_retries:
                    time.sleep(0.5 * attempt)

        raise LineApiError(f"LINE content download failed after retries: {last_exc}") from last_exc
