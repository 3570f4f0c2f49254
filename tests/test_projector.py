from __future__ import annotations

from coach_relay.ledger import Ledger
from coach_relay.projector import StatsProjector

from conftest import make_record, seed_ledger


def test_records_newest_first_with_paging(ledger: Ledger) -> None:
    seed_ledger(ledger, [make_record("win", symbol=f"S{i}") for i in range(5)])
    projector = StatsProjector(ledger)

    assert [r["symbol"] for r in projector.get_records()] == ["S4", "S3", "S2", "S1", "S0"]
    assert [r["symbol"] for r in projector.get_records(limit=2)] == ["S4", "S3"]
    assert [r["symbol"] for r in projector.get_records(limit=2, offset=3)] == ["S1", "S0"]
    assert projector.get_records(offset=10) == []


def test_records_use_snake_case_keys(ledger: Ledger) -> None:
    seed_ledger(ledger, [make_record("loss")])
    record = StatsProjector(ledger).get_records()[0]

    assert {"id", "created_at", "closed_at", "risk_r", "tp15", "strategy_allowed", "is_trade"} <= set(record)


def test_stats_snapshot(ledger: Ledger) -> None:
    seed_ledger(ledger, [make_record("win"), make_record("loss"), make_record("win"), make_record("pending")])
    stats = StatsProjector(ledger).get_stats()

    assert stats["count"] == 3
    assert stats["pending"] == 1
    assert stats["win_rate"] == 66.67
    assert stats["cumulative_r_curve"] == [1.0, 0.0, 1.0]
    assert stats["max_drawdown"] == 1.0


def test_projector_reads_do_not_write(ledger: Ledger) -> None:
    projector = StatsProjector(ledger)
    projector.get_stats()
    projector.get_records()

    assert not ledger.path.exists()
