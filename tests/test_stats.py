from __future__ import annotations

from coach_relay.ledger import Ledger
from coach_relay.models import DecisionRecord
from coach_relay.stats import compute_stats, format_summary

from conftest import make_record, seed_ledger


def test_win_loss_win_sequence() -> None:
    stats = compute_stats([make_record("win"), make_record("loss"), make_record("win")])

    assert stats.count == 3
    assert stats.wins == 2
    assert stats.losses == 1
    assert stats.win_rate == 66.67
    assert stats.cumulative_r_curve == [1.0, 0.0, 1.0]
    assert stats.max_drawdown == 1.0
    assert stats.total_r == 1.0
    assert stats.avg_r == 0.3333


def test_empty_ledger_stats_are_zero() -> None:
    stats = compute_stats([])

    assert stats.count == 0
    assert stats.win_rate == 0.0
    assert stats.avg_r == 0.0
    assert stats.cumulative_r_curve == []
    assert stats.max_drawdown == 0.0
    assert stats.rolling_win_rate == 0.0


def test_drawdown_counts_from_starting_equity() -> None:
    stats = compute_stats([make_record("loss"), make_record("loss"), make_record("win")])

    assert stats.cumulative_r_curve == [-1.0, -2.0, -1.0]
    assert stats.max_drawdown == 2.0


def test_risk_units_weight_the_curve() -> None:
    records = [make_record("win", risk_r=2), make_record("loss", risk_r=0.5), make_record("win", risk_r=1.5)]
    stats = compute_stats(records)

    assert stats.cumulative_r_curve == [2.0, 1.5, 3.0]
    assert stats.max_drawdown == 0.5
    assert stats.total_r == 3.0


def test_pending_records_only_count_as_pending() -> None:
    stats = compute_stats([make_record("win"), make_record("pending"), make_record("loss")])

    assert stats.total_records == 3
    assert stats.pending == 1
    assert stats.count == 2
    assert stats.cumulative_r_curve == [1.0, 0.0]


def test_losing_streaks() -> None:
    statuses = ["loss", "loss", "loss", "win", "loss", "loss"]
    stats = compute_stats([make_record(s) for s in statuses])

    assert stats.max_consecutive_losses == 3
    assert stats.current_consecutive_losses == 2


def test_rolling_window_uses_most_recent_records() -> None:
    records = [make_record("loss") for _ in range(5)] + [make_record("win") for _ in range(3)]
    stats = compute_stats(records, rolling_window=4)

    assert stats.rolling_window == 4
    assert stats.rolling_win_rate == 75.0
    assert stats.win_rate == 37.5


def test_stats_are_pure_over_the_same_records() -> None:
    records = [make_record("win"), make_record("loss")]
    assert compute_stats(records) == compute_stats(records)


def test_pending_append_then_close_recomputes_from_disk(ledger: Ledger) -> None:
    seed_ledger(ledger, [make_record("win"), make_record("loss")])
    before = ledger.compute_stats()

    ledger.append(DecisionRecord(id="", created_at="", symbol="BTCUSDT", direction="long"))
    with_pending = ledger.compute_stats()

    assert with_pending.win_rate == before.win_rate
    assert with_pending.avg_r == before.avg_r
    assert with_pending.cumulative_r_curve == before.cumulative_r_curve
    assert with_pending.max_drawdown == before.max_drawdown
    assert with_pending.pending == 1

    ledger.close_latest_pending("win")
    after = ledger.compute_stats()

    assert after.win_rate == 66.67
    assert after.cumulative_r_curve == [1.0, 0.0, 1.0]
    assert after.avg_r == 0.3333
    assert after.pending == 0


def test_format_summary_mentions_key_numbers() -> None:
    summary = format_summary(compute_stats([make_record("win"), make_record("loss"), make_record("win")]))

    assert "總筆數：3" in summary
    assert "66.67%" in summary
    assert "最大回撤：1.00 R" in summary
