from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from zoneinfo import ZoneInfoNotFoundError

import pytest

from coach_relay.models import DecisionRecord
from coach_relay.risk import RiskGate, RiskPolicy, load_risk_policy
from coach_relay.settings import settings

from conftest import NOW, make_record


def test_three_consecutive_losses_block(gate: RiskGate) -> None:
    records = [make_record("loss", risk_r=0.5) for _ in range(3)]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is False
    assert decision.rule == "consecutive_losses"
    assert "已連續虧損 3 單" in decision.message
    assert decision.state.consecutive_losses == 3


def test_two_losses_then_win_allows(gate: RiskGate) -> None:
    records = [make_record("loss"), make_record("loss"), make_record("win")]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is True
    assert decision.message == ""
    assert decision.state.consecutive_losses == 0


def test_pending_records_do_not_break_a_losing_streak(gate: RiskGate) -> None:
    records = [make_record("loss", risk_r=0.5) for _ in range(3)] + [make_record("pending")]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is False
    assert decision.rule == "consecutive_losses"


def test_empty_ledger_allows(gate: RiskGate) -> None:
    decision = gate.evaluate([], now=NOW)
    assert decision.allow is True
    assert decision.state.today_r == 0


def test_daily_loss_limit_blocks(gate: RiskGate) -> None:
    records = [make_record("loss", risk_r=2), make_record("win", risk_r=1), make_record("loss", risk_r=2)]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is False
    assert decision.rule == "daily_loss"
    assert decision.state.today_r == -3.0
    assert decision.state.trading_day == "2026-03-10"


def test_losses_from_yesterday_do_not_count_today(gate: RiskGate) -> None:
    yesterday = NOW - timedelta(days=1)
    records = [
        make_record("loss", risk_r=2, created_at=yesterday),
        make_record("loss", risk_r=2, created_at=yesterday),
        make_record("win", risk_r=1),
    ]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is True
    assert decision.state.today_r == 1.0


def test_creation_time_used_when_close_time_missing(gate: RiskGate) -> None:
    today = NOW.replace(hour=1).isoformat()
    records = [
        DecisionRecord(created_at=today, status="loss", risk_r=2),
        DecisionRecord(created_at=today, status="win", risk_r=0.5),
        DecisionRecord(created_at=today, status="loss", risk_r=2),
    ]
    decision = gate.evaluate(records, now=NOW)

    assert decision.allow is False
    assert decision.rule == "daily_loss"


def test_trading_day_follows_policy_timezone() -> None:
    # 17:00 UTC on the 9th is already the 10th in Taipei
    closed = NOW.replace(day=9, hour=17)
    records = [
        make_record("loss", risk_r=2, created_at=closed - timedelta(hours=2), closed_at=closed),
        make_record("win", risk_r=0.5, created_at=closed - timedelta(hours=1), closed_at=closed),
        make_record("loss", risk_r=2, created_at=closed - timedelta(minutes=30), closed_at=closed),
    ]

    utc_gate = RiskGate(RiskPolicy(max_consecutive_losses=3, max_daily_loss_r=-3.0, timezone="UTC"))
    taipei_gate = RiskGate(RiskPolicy(max_consecutive_losses=3, max_daily_loss_r=-3.0, timezone="Asia/Taipei"))

    assert utc_gate.evaluate(records, now=NOW).allow is True
    blocked = taipei_gate.evaluate(records, now=NOW)
    assert blocked.allow is False
    assert blocked.rule == "daily_loss"
    assert blocked.state.today_r == -3.5


def test_consecutive_rule_checked_before_daily(gate: RiskGate) -> None:
    records = [make_record("loss", risk_r=2) for _ in range(3)]
    decision = gate.evaluate(records, now=NOW)

    assert decision.rule == "consecutive_losses"
    assert decision.state.today_r == -6.0


def test_load_policy_from_yaml(tmp_path) -> None:
    policy_file = tmp_path / "risk_policy.yaml"
    policy_file.write_text(
        "timezone: Asia/Taipei\nlimits:\n  max_consecutive_losses: 4\n  max_daily_loss_r: 5\n",
        encoding="utf-8",
    )
    policy = load_risk_policy(policy_file)

    assert policy.max_consecutive_losses == 4
    assert policy.max_daily_loss_r == -5.0
    assert policy.timezone == "Asia/Taipei"


def test_missing_policy_file_uses_settings(tmp_path) -> None:
    policy = load_risk_policy(tmp_path / "absent.yaml")

    assert policy.max_consecutive_losses == settings.max_consecutive_losses
    assert policy.max_daily_loss_r == settings.max_daily_loss_r
    assert policy.timezone == settings.risk_timezone


def test_policy_without_timezone_key_follows_settings(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(settings, "risk_timezone", "Asia/Taipei")
    policy_file = tmp_path / "risk_policy.yaml"
    policy_file.write_text("limits:\n  max_consecutive_losses: 2\n", encoding="utf-8")

    policy = load_risk_policy(policy_file)

    assert policy.max_consecutive_losses == 2
    assert policy.timezone == "Asia/Taipei"


def test_shipped_policy_leaves_timezone_to_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "risk_timezone", "Asia/Taipei")
    shipped = Path(__file__).resolve().parents[1] / "config" / "risk_policy.yaml"

    policy = load_risk_policy(shipped)

    assert policy.timezone == "Asia/Taipei"
    assert policy.max_consecutive_losses == 3
    assert policy.max_daily_loss_r == -3.0


def test_policy_with_unknown_timezone_is_rejected(tmp_path) -> None:
    policy_file = tmp_path / "risk_policy.yaml"
    policy_file.write_text("timezone: Mars/Olympus_Mons\n", encoding="utf-8")

    with pytest.raises(ZoneInfoNotFoundError):
        load_risk_policy(policy_file)


def test_policy_rejects_zero_loss_streak(tmp_path) -> None:
    policy_file = tmp_path / "risk_policy.yaml"
    policy_file.write_text("limits:\n  max_consecutive_losses: 0\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_risk_policy(policy_file)
