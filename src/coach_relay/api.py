from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger

from .ai_client import AIClientError, GeminiClient, MediaPart
from .classifier import RegimeClassifier
from .history import ConversationHistory
from .ledger import Ledger, LedgerError
from .line_client import LineApiError, LineClient, verify_signature
from .projector import StatsProjector
from .prompts import AUDIO_INSTRUCTION, COACH_SYSTEM_PROMPT, IMAGE_INSTRUCTION, with_history
from .resolver import is_result_command
from .risk import RiskGate, load_risk_policy
from .service import DecisionService
from .settings import settings

AI_FAILURE_MESSAGE = "⚠️ AI 目前沒有回應，請稍後再試一次。"
MEDIA_FAILURE_MESSAGE = "檔案下載失敗，請稍後再傳一次看看。"
UNSUPPORTED_MESSAGE = "目前只支援文字、圖片與語音訊息，其他類型暫時不處理。"
GENERIC_FAILURE_MESSAGE = "⚠️ 系統暫時無法處理這則訊息，請稍後再試。"

MEDIA_TYPES: dict[str, tuple[str, str]] = {
    "image": ("image/jpeg", IMAGE_INSTRUCTION),
    "audio": ("audio/mp4", AUDIO_INSTRUCTION),
}


def _redacted(value: str) -> str:
    if not value:
        return "(empty)"
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


class RelayController:
    def __init__(
        self,
        ai: GeminiClient | None = None,
        line: LineClient | None = None,
        ledger: Ledger | None = None,
        history: ConversationHistory | None = None,
        service: DecisionService | None = None,
    ) -> None:
        self.ai = ai or GeminiClient()
        self.line = line or LineClient()
        self.ledger = ledger or Ledger()
        self.history = history or ConversationHistory()
        classifier = RegimeClassifier(self.ai) if settings.regime_check_enabled else None
        self.service = service or DecisionService(self.ledger, RiskGate(load_risk_policy()), classifier)
        self.projector = StatsProjector(self.ledger)
        self._pool: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._pool is not None:
                return
            self._pool = ThreadPoolExecutor(max_workers=settings.event_workers, thread_name_prefix="line-event")

        logger.info(
            "Relay started model={} key={} line_token={} line_secret={} ledger={}",
            self.ai.model,
            _redacted(self.ai.api_key),
            "set" if self.line.is_configured() else "MISSING",
            "set" if settings.line_channel_secret else "MISSING",
            self.ledger.path,
        )
        if not settings.line_channel_secret:
            logger.warning("LINE_CHANNEL_SECRET not set; webhook signatures are not verified")

    def stop(self, wait: bool = False) -> None:
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait)

    def dispatch(self, events: list[dict[str, Any]]) -> int:
        self.start()
        pool = self._pool
        submitted = 0
        for event in events:
            if not isinstance(event, dict) or pool is None:
                continue
            pool.submit(self.handle_event, event)
            submitted += 1
        return submitted

    def handle_event(self, event: dict[str, Any]) -> str | None:
        reply_token = event.get("replyToken")
        if event.get("type") != "message" or not reply_token:
            return None

        message = event.get("message") or {}
        user_id = str((event.get("source") or {}).get("userId", ""))
        kind = message.get("type")

        try:
            if kind == "text":
                reply = self._handle_text(user_id, str(message.get("text") or "").strip())
            elif kind in MEDIA_TYPES:
                reply = self._handle_media(user_id, kind, str(message.get("id") or ""))
            else:
                reply = UNSUPPORTED_MESSAGE
        except Exception:
            logger.exception("Event processing failed for user {}", user_id or "-")
            reply = GENERIC_FAILURE_MESSAGE

        self.line.reply(reply_token, reply)
        return reply

    def _handle_text(self, user_id: str, text: str) -> str:
        if is_result_command(text):
            return self.service.handle_close_command(text)
        if any(text.lower().startswith(p.lower()) for p in settings.split_csv(settings.stats_command_prefixes_csv)):
            return self.service.stats_summary()

        prompt = with_history(text, self.history.recent(user_id))
        ai_text = self._ask(prompt)
        if ai_text is None:
            return AI_FAILURE_MESSAGE

        reply = self.service.compose_reply(ai_text, situation=text)
        self.history.add(user_id, "user", text)
        self.history.add(user_id, "assistant", reply)
        return reply

    def _handle_media(self, user_id: str, kind: str, message_id: str) -> str:
        mime_type, instruction = MEDIA_TYPES[kind]
        try:
            data = self.line.download_content(message_id)
        except LineApiError as exc:
            logger.error("Media download failed for {} {}: {}", kind, message_id, exc)
            return MEDIA_FAILURE_MESSAGE

        ai_text = self._ask(instruction, MediaPart(data=data, mime_type=mime_type))
        if ai_text is None:
            return AI_FAILURE_MESSAGE

        reply = self.service.compose_reply(ai_text)
        self.history.add(user_id, "user", f"[{kind}]")
        self.history.add(user_id, "assistant", reply)
        return reply

    def _ask(self, prompt: str, media: MediaPart | None = None) -> str | None:
        try:
            return self.ai.generate_text(COACH_SYSTEM_PROMPT, prompt, media)
        except AIClientError as exc:
            logger.error("AI generation failed: {}", exc)
            return None

    def records(self, limit: int | None, offset: int) -> list[dict[str, Any]]:
        try:
            return self.projector.get_records(limit=limit, offset=offset)
        except LedgerError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    def stats(self) -> dict[str, Any]:
        try:
            return self.projector.get_stats()
        except LedgerError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc


controller = RelayController()


app = FastAPI(title="Coach Relay API", version="1.0.0")


@app.on_event("startup")
def on_startup() -> None:
    controller.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    controller.stop()


@app.post("/webhook")
async def post_webhook(request: Request) -> PlainTextResponse:
    raw_body = await request.body()
    if settings.line_channel_secret:
        signature = request.headers.get("x-line-signature", "")
        if not verify_signature(raw_body, signature, settings.line_channel_secret):
            logger.warning("Rejected webhook with invalid LINE signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Body is not JSON") from exc

    events = payload.get("events") if isinstance(payload, dict) else None
    controller.dispatch(events if isinstance(events, list) else [])
    return PlainTextResponse("OK")


@app.get("/ledger/records")
def get_ledger_records(
    limit: int | None = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
) -> list[dict[str, Any]]:
    return controller.records(limit=limit, offset=offset)


@app.get("/ledger/stats")
def get_ledger_stats() -> dict[str, Any]:
    """LedgerStats as JSON, snake_case keys: count, win_rate, avg_r,
    cumulative_r_curve, max_drawdown, max_consecutive_losses, rolling_win_rate
    (plus total_records, pending, wins, losses, total_r, rolling_window,
    current_consecutive_losses)."""
    return controller.stats()


@app.get("/healthz")
def healthz() -> JSONResponse:
    return JSONResponse({"ok": True, "time": datetime.now(timezone.utc).isoformat()})
