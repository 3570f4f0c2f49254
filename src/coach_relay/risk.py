from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import yaml
from loguru import logger

from .models import DecisionRecord
from .settings import settings
from .stats import terminal_records, trailing_losses


@dataclass
class RiskPolicy:
    max_consecutive_losses: int
    max_daily_loss_r: float
    timezone: str


@dataclass
class RiskState:
    consecutive_losses: int
    today_r: float
    trading_day: str


@dataclass
class GateDecision:
    allow: bool
    message: str
    rule: str
    state: RiskState


def load_risk_policy(file_path: Path | None = None) -> RiskPolicy:
    path = Path(file_path or settings.risk_policy_path)
    if not path.exists():
        return RiskPolicy(
            max_consecutive_losses=settings.max_consecutive_losses,
            max_daily_loss_r=settings.max_daily_loss_r,
            timezone=settings.risk_timezone,
        )

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    limits = raw.get("limits", {})
    policy = RiskPolicy(
        max_consecutive_losses=int(limits.get("max_consecutive_losses", settings.max_consecutive_losses)),
        # the daily stop is a loss threshold, always stored as a negative R value
        max_daily_loss_r=-abs(float(limits.get("max_daily_loss_r", settings.max_daily_loss_r))),
        timezone=str(raw.get("timezone", settings.risk_timezone)),
    )
    if policy.max_consecutive_losses < 1:
        raise ValueError("max_consecutive_losses must be at least 1")
    ZoneInfo(policy.timezone)
    return policy


class RiskGate:
    """Hard stops checked before a new trade recommendation is logged."""

    def __init__(self, policy: RiskPolicy | None = None) -> None:
        self.policy = policy or load_risk_policy()
        self._tz = ZoneInfo(self.policy.timezone)

    def risk_state(self, records: Sequence[DecisionRecord], now: datetime | None = None) -> RiskState:
        current = (now or datetime.now(timezone.utc)).astimezone(self._tz)
        trading_day = current.date()
        finished = terminal_records(records)

        today_r = 0.0
        for record in finished:
            settled = record.settled_at()
            if settled is None:
                continue
            if settled.astimezone(self._tz).date() == trading_day:
                today_r += record.signed_r

        return RiskState(
            consecutive_losses=trailing_losses(finished),
            today_r=round(today_r, 4),
            trading_day=trading_day.isoformat(),
        )

    def evaluate(self, records: Sequence[DecisionRecord], now: datetime | None = None) -> GateDecision:
        state = self.risk_state(records, now)

        if state.consecutive_losses >= self.policy.max_consecutive_losses:
            logger.info(
                "Risk gate blocked: {} consecutive losses (limit {})",
                state.consecutive_losses,
                self.policy.max_consecutive_losses,
            )
            return GateDecision(
                allow=False,
                rule="consecutive_losses",
                state=state,
                message=(
                    f"⚠️ 風控提醒：你已連續虧損 {state.consecutive_losses} 單"
                    f"（上限 {self.policy.max_consecutive_losses} 單）。\n"
                    "盤整可能已經結束，建議先暫停交易、退出觀望。\n"
                    "這次分析照常提供，但不會記錄成新的一筆交易。"
                ),
            )

        if state.today_r <= self.policy.max_daily_loss_r:
            logger.info(
                "Risk gate blocked: today {}R at or below daily limit {}R ({} {})",
                state.today_r,
                self.policy.max_daily_loss_r,
                state.trading_day,
                self.policy.timezone,
            )
            return GateDecision(
                allow=False,
                rule="daily_loss",
                state=state,
                message=(
                    f"⚠️ 風控提醒：今天（{state.trading_day} {self.policy.timezone}）累積 {state.today_r:.2f} R，"
                    f"已達每日虧損上限 {self.policy.max_daily_loss_r:.2f} R。\n"
                    "今天不建議再開新倉，先休息、復盤。\n"
                    "這次分析照常提供，但不會記錄成新的一筆交易。"
                ),
            )

        return GateDecision(allow=True, rule="", state=state, message="")
