"""Decision pipeline between the AI reply and the ledger.

    AI text -> DecisionExtractor -> RegimeClassifier -> RiskGate -> Ledger.append

The gate evaluation and the append run under the ledger lock as one critical
section, so two concurrent trade replies cannot both pass a gate that only one
of them should have passed.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from .classifier import RegimeClassifier
from .extractor import DecisionExtractor
from .ledger import Ledger, LedgerError
from .models import DecisionRecord, RegimeVerdict
from .resolver import OutcomeResolver
from .risk import GateDecision, RiskGate
from .settings import settings
from .stats import format_summary

LEDGER_UNAVAILABLE_MESSAGE = "⚠️ 這次的交易建議暫時無法寫入紀錄，分析內容照常提供。"
CLOSE_REMINDER = "※ 出場後記得用「#結果 勝」或「#結果 敗」更新，風控才會幫你擋子彈。"


@dataclass
class ReplyAnnotation:
    text: str = ""
    prepend: bool = False
    record: DecisionRecord | None = None
    gate: GateDecision | None = None
    verdict: RegimeVerdict | None = None


class DecisionService:
    def __init__(
        self,
        ledger: Ledger,
        gate: RiskGate | None = None,
        classifier: RegimeClassifier | None = None,
        extractor: DecisionExtractor | None = None,
        strip_payload: bool | None = None,
    ) -> None:
        self.ledger = ledger
        self.gate = gate or RiskGate()
        self.classifier = classifier
        self.extractor = extractor or DecisionExtractor()
        self.resolver = OutcomeResolver(ledger)
        self.strip_payload = settings.strip_decision_payload if strip_payload is None else strip_payload

    def handle_incoming_decision(self, ai_text: str, situation: str = "") -> ReplyAnnotation:
        record = self.extractor.extract(ai_text)
        if record is None or not record.is_trade:
            return ReplyAnnotation()

        verdict = self._classify(situation, record)
        if verdict is not None:
            record.regime = verdict.regime
            record.strategy_allowed = verdict.strategy_allowed

        try:
            with self.ledger.locked():
                decision = self.gate.evaluate(self.ledger.records())
                if not decision.allow:
                    return ReplyAnnotation(text=decision.message, prepend=True, gate=decision, verdict=verdict)
                stored = self.ledger.append(record)
                stats = self.ledger.compute_stats()
        except LedgerError as exc:
            logger.error("Decision not logged: {}", exc)
            return ReplyAnnotation(text=LEDGER_UNAVAILABLE_MESSAGE, verdict=verdict)

        lines = ["——"]
        if verdict is not None and not verdict.strategy_allowed:
            lines.append(self._regime_warning(verdict))
        lines.append("📊 目前簡易統計（已結束交易）：")
        lines.append(format_summary(stats))
        lines.append(CLOSE_REMINDER)
        return ReplyAnnotation(text="\n".join(lines), record=stored, gate=decision, verdict=verdict)

    def compose_reply(self, ai_text: str, situation: str = "") -> str:
        annotation = self.handle_incoming_decision(ai_text, situation)
        body = self.extractor.strip_payload(ai_text) if self.strip_payload else ai_text
        if not annotation.text:
            return body
        if annotation.prepend:
            return f"{annotation.text}\n\n{body}"
        return f"{body}\n\n{annotation.text}"

    def handle_close_command(self, text: str) -> str:
        return self.resolver.handle(text)

    def stats_summary(self) -> str:
        try:
            stats = self.ledger.compute_stats()
        except LedgerError as exc:
            logger.error("Stats summary failed: {}", exc)
            return "⚠️ 目前無法讀取交易統計，請稍後再試。"
        return f"📊 目前統計（已結束交易）：\n{format_summary(stats)}\n- 未結束：{stats.pending} 筆"

    def _classify(self, situation: str, record: DecisionRecord) -> RegimeVerdict | None:
        if self.classifier is None:
            return None
        description = situation.strip() or record.note
        return self.classifier.classify(description)

    @staticmethod
    def _regime_warning(verdict: RegimeVerdict) -> str:
        regime_label = {"range": "盤整", "trend": "趨勢", "unknown": "無法判斷"}[verdict.regime]
        return (
            f"⚠️ 盤勢判斷：{regime_label}，此情境不確定適用獵影策略"
            f"（{verdict.reason or '無說明'}），進場前請再次確認。"
        )
