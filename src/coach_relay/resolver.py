from __future__ import annotations

from typing import Literal

from loguru import logger

from .ledger import Ledger, LedgerError, NoOpenPosition
from .settings import settings
from .stats import format_summary

WIN_WORDS = ("勝", "贏", "win")
LOSS_WORDS = ("敗", "虧", "輸", "loss", "lose")

HELP_MESSAGE = "要更新交易結果，請這樣輸入：\n\n#結果 勝\n或\n#結果 敗"
NO_RECORDS_MESSAGE = "目前沒有任何交易紀錄，先讓我幫你找一個進場點再說吧。"
NO_OPEN_MESSAGE = "目前沒有未結束的交易紀錄，可以先讓我幫你找新的進場機會。"
STORAGE_ERROR_MESSAGE = "⚠️ 交易紀錄暫時無法更新，請稍後再試一次。"
STATS_UNAVAILABLE_MESSAGE = "（目前統計暫時無法讀取，結果已記錄，請勿重複送出。）"


def is_result_command(text: str) -> bool:
    stripped = (text or "").strip().lower()
    return any(stripped.startswith(prefix.lower()) for prefix in settings.split_csv(settings.result_command_prefixes_csv))


def parse_outcome(text: str) -> Literal["win", "loss"] | None:
    """Map the command body to an outcome; ambiguous text maps to None."""
    body = (text or "").lower()
    for prefix in settings.split_csv(settings.result_command_prefixes_csv):
        if body.strip().startswith(prefix.lower()):
            body = body.strip()[len(prefix):]
            break

    is_win = any(word in body for word in WIN_WORDS)
    is_loss = any(word in body for word in LOSS_WORDS)
    if is_win == is_loss:
        return None
    return "win" if is_win else "loss"


class OutcomeResolver:
    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    def handle(self, text: str) -> str:
        outcome = parse_outcome(text)
        if outcome is None:
            return HELP_MESSAGE

        try:
            record = self.ledger.close_latest_pending(outcome)
        except NoOpenPosition:
            return self._no_open_reply()
        except LedgerError as exc:
            logger.error("Result command failed: {}", exc)
            return STORAGE_ERROR_MESSAGE

        label = "✅ 勝" if outcome == "win" else "❌ 敗"
        symbol = f"{record.symbol} " if record.symbol else ""
        closed = f"已更新上一筆交易 {symbol}結果為：{label}（{record.signed_r:+.2f} R）。"

        # close already persisted from here on
        try:
            stats = self.ledger.compute_stats()
        except LedgerError as exc:
            logger.error("Stats after close of {} unavailable: {}", record.id, exc)
            return f"{closed}\n\n{STATS_UNAVAILABLE_MESSAGE}"
        return f"{closed}\n\n目前統計（已結束）：\n{format_summary(stats)}"

    def _no_open_reply(self) -> str:
        try:
            has_records = bool(self.ledger.records())
        except LedgerError as exc:
            logger.error("Ledger read after no-open close failed: {}", exc)
            return NO_OPEN_MESSAGE
        return NO_OPEN_MESSAGE if has_records else NO_RECORDS_MESSAGE
