from __future__ import annotations

from typing import Protocol

from loguru import logger

from .extractor import locate_json_payload, normalize_regime
from .models import RegimeVerdict
from .prompts import REGIME_SYSTEM_PROMPT


class TextGenerator(Protocol):
    def generate_text(self, system_prompt: str, user_text: str, media=None) -> str: ...


def _unparseable() -> RegimeVerdict:
    return RegimeVerdict(regime="unknown", strategy_allowed=False, reason="unparseable")


def parse_regime_reply(reply: str | None) -> RegimeVerdict:
    """Strict-JSON regime verdict; anything unclear fails closed."""
    match = locate_json_payload(reply)
    if match is None:
        return _unparseable()

    raw_regime = match.payload.get("regime")
    if not isinstance(raw_regime, str):
        return _unparseable()
    regime = normalize_regime(raw_regime)
    if regime == "unknown" and raw_regime.strip().lower() != "unknown":
        return _unparseable()

    allowed = regime == "range" and match.payload.get("strategy_allowed") is not False
    reason = str(match.payload.get("reason") or "").strip()[:200]
    return RegimeVerdict(regime=regime, strategy_allowed=allowed, reason=reason)  # type: ignore[arg-type]


class RegimeClassifier:
    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    def classify(self, situation_text: str) -> RegimeVerdict:
        if not (situation_text or "").strip():
            return RegimeVerdict(regime="unknown", strategy_allowed=False, reason="no_situation")
        try:
            reply = self.generator.generate_text(REGIME_SYSTEM_PROMPT, situation_text)
        except Exception as exc:
            logger.warning("Regime classification unavailable: {}", exc)
            return RegimeVerdict(regime="unknown", strategy_allowed=False, reason="classifier_unavailable")

        verdict = parse_regime_reply(reply)
        logger.debug("Regime verdict {} allowed={} ({})", verdict.regime, verdict.strategy_allowed, verdict.reason)
        return verdict
