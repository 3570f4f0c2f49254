"""Structured-decision extraction from free-text AI replies.

The persona prompt asks the model to end every answer with a one-line JSON
summary.  Models do not always comply: the payload may be fenced in a code
block, buried mid-text, malformed, or missing.  ``locate_json_payload`` tries,
in order:

  1. the last fenced code block holding a JSON object
  2. the last non-empty line, when it is a bare ``{...}`` object
  3. every balanced-brace span in the text, last one first

Nothing here raises for bad input; a reply without a usable payload simply
yields ``None``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from .models import DecisionRecord, coerce_price, coerce_risk_unit

_FENCE_RE = re.compile(r"```(?:[A-Za-z0-9_-]+)?[ \t]*\n?(.*?)```", re.DOTALL)

DIRECTION_ALIASES: dict[str, str] = {
    "long": "long",
    "buy": "long",
    "做多": "long",
    "多": "long",
    "short": "short",
    "sell": "short",
    "做空": "short",
    "空": "short",
    "none": "none",
    "flat": "none",
    "觀望": "none",
}

REGIME_ALIASES: dict[str, str] = {
    "range": "range",
    "ranging": "range",
    "sideways": "range",
    "consolidation": "range",
    "盤整": "range",
    "trend": "trend",
    "trending": "trend",
    "趨勢": "trend",
    "unknown": "unknown",
}


@dataclass
class PayloadMatch:
    payload: dict[str, Any]
    start: int
    end: int


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _balanced_spans(text: str) -> list[tuple[int, int]]:
    """Top-level ``{...}`` spans, skipping braces inside JSON strings."""
    spans: list[tuple[int, int]] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((start, idx + 1))
    return spans


def locate_json_payload(text: str | None) -> PayloadMatch | None:
    if not text or not isinstance(text, str):
        return None

    for fence in reversed(list(_FENCE_RE.finditer(text))):
        payload = _loads_object(fence.group(1).strip())
        if payload is not None:
            return PayloadMatch(payload, fence.start(), fence.end())

    stripped = text.rstrip()
    last_break = stripped.rfind("\n")
    last_line = stripped[last_break + 1:].strip()
    if last_line.startswith("{") and last_line.endswith("}"):
        payload = _loads_object(last_line)
        if payload is not None:
            return PayloadMatch(payload, last_break + 1, len(stripped))

    for start, end in reversed(_balanced_spans(text)):
        payload = _loads_object(text[start:end])
        if payload is not None:
            return PayloadMatch(payload, start, end)
    return None


def normalize_direction(value: Any) -> str:
    if value is None:
        return "none"
    key = str(value).strip().lower()
    if not key:
        return "none"
    return DIRECTION_ALIASES.get(key, "unknown")


def normalize_regime(value: Any) -> str:
    if value is None:
        return "unknown"
    return REGIME_ALIASES.get(str(value).strip().lower(), "unknown")


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if isinstance(value, (int, float)):
        return value == 1
    return False


class DecisionExtractor:
    def extract(self, ai_text: str | None) -> DecisionRecord | None:
        match = locate_json_payload(ai_text)
        if match is None:
            return None
        try:
            return self._to_record(match.payload)
        except Exception:
            return None

    @staticmethod
    def strip_payload(ai_text: str) -> str:
        match = locate_json_payload(ai_text)
        if match is None:
            return ai_text
        cleaned = (ai_text[: match.start] + ai_text[match.end:]).strip()
        return cleaned or ai_text

    @staticmethod
    def _to_record(payload: dict[str, Any]) -> DecisionRecord:
        # id and created_at are stamped by the ledger on append
        allowed = payload.get("strategy_allowed")
        return DecisionRecord(
            id="",
            created_at="",
            symbol=str(payload.get("symbol") or "").strip().upper(),
            direction=normalize_direction(payload.get("direction")),  # type: ignore[arg-type]
            entry=coerce_price(payload.get("entry")),
            stop=coerce_price(payload.get("stop")),
            tp1=coerce_price(payload.get("tp1")),
            tp15=coerce_price(payload.get("tp15")),
            risk_r=coerce_risk_unit(payload.get("risk_r")),
            note=str(payload.get("note") or "")[:200],
            regime=normalize_regime(payload.get("regime")),  # type: ignore[arg-type]
            strategy_allowed=allowed if isinstance(allowed, bool) else None,
            is_trade=_coerce_flag(payload.get("is_trade")),
        )
