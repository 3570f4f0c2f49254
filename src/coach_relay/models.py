from __future__ import annotations

import hashlib
import json
import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

Direction = Literal["long", "short", "none", "unknown"]
Regime = Literal["range", "trend", "unknown"]
Status = Literal["pending", "win", "loss"]

DIRECTIONS: tuple[str, ...] = ("long", "short", "none", "unknown")
REGIMES: tuple[str, ...] = ("range", "trend", "unknown")
TERMINAL_STATUSES: tuple[str, ...] = ("win", "loss")

# Legacy keys written by the first single-file version of the bot.
_LEGACY_KEYS = {
    "time": "created_at",
    "result": "status",
    "closedAt": "closed_at",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_record_id() -> str:
    return uuid.uuid4().hex


def _stable_id(raw: dict[str, Any]) -> str:
    """Id for a stored record that predates ids; same content, same id."""
    blob = json.dumps(raw, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:32]


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_price(value: Any) -> float | None:
    """Finite float or None. Zero is a real price and is kept."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def coerce_risk_unit(value: Any) -> float:
    number = coerce_price(value)
    if number is None or number == 0:
        return 1.0
    return abs(number)


@dataclass
class DecisionRecord:
    id: str = field(default_factory=new_record_id)
    created_at: str = field(default_factory=utc_now_iso)
    symbol: str = ""
    direction: Direction = "none"
    entry: float | None = None
    stop: float | None = None
    tp1: float | None = None
    tp15: float | None = None
    risk_r: float = 1.0
    note: str = ""
    regime: Regime = "unknown"
    strategy_allowed: bool | None = None
    status: Status = "pending"
    closed_at: str | None = None
    is_trade: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def signed_r(self) -> float:
        if self.status == "win":
            return self.risk_r
        if self.status == "loss":
            return -self.risk_r
        return 0.0

    def settled_at(self) -> datetime | None:
        return parse_iso_datetime(self.closed_at) or parse_iso_datetime(self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "DecisionRecord":
        data = dict(raw)
        for legacy, current in _LEGACY_KEYS.items():
            if legacy in data and current not in data:
                data[current] = data.pop(legacy)

        status = str(data.get("status") or "pending").lower()
        if status not in ("pending",) + TERMINAL_STATUSES:
            status = "pending"
        direction = str(data.get("direction") or "none").lower()
        if direction not in DIRECTIONS:
            direction = "unknown"
        regime = str(data.get("regime") or "unknown").lower()
        if regime not in REGIMES:
            regime = "unknown"
        allowed = data.get("strategy_allowed")

        return cls(
            id=str(data.get("id") or _stable_id(raw)),
            created_at=str(data.get("created_at") or utc_now_iso()),
            symbol=str(data.get("symbol") or ""),
            direction=direction,  # type: ignore[arg-type]
            entry=coerce_price(data.get("entry")),
            stop=coerce_price(data.get("stop")),
            tp1=coerce_price(data.get("tp1")),
            tp15=coerce_price(data.get("tp15")),
            risk_r=coerce_risk_unit(data.get("risk_r")),
            note=str(data.get("note") or ""),
            regime=regime,  # type: ignore[arg-type]
            strategy_allowed=allowed if isinstance(allowed, bool) else None,
            status=status,  # type: ignore[arg-type]
            closed_at=str(data["closed_at"]) if data.get("closed_at") else None,
            is_trade=bool(data.get("is_trade", True)),
        )


@dataclass
class RegimeVerdict:
    regime: Regime
    strategy_allowed: bool
    reason: str


@dataclass
class LedgerStats:
    total_records: int
    pending: int
    count: int
    wins: int
    losses: int
    win_rate: float
    avg_r: float
    total_r: float
    cumulative_r_curve: list[float]
    max_drawdown: float
    max_consecutive_losses: int
    current_consecutive_losses: int
    rolling_window: int
    rolling_win_rate: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
