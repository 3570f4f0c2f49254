from __future__ import annotations

from collections.abc import Iterable, Sequence

from .models import DecisionRecord, LedgerStats


def terminal_records(records: Iterable[DecisionRecord]) -> list[DecisionRecord]:
    return [r for r in records if r.is_terminal]


def trailing_losses(terminal: Sequence[DecisionRecord]) -> int:
    streak = 0
    for record in reversed(terminal):
        if record.status != "loss":
            break
        streak += 1
    return streak


def _win_rate_pct(records: Sequence[DecisionRecord]) -> float:
    if not records:
        return 0.0
    wins = sum(1 for r in records if r.status == "win")
    return round(wins / len(records) * 100, 2)


def compute_stats(records: Sequence[DecisionRecord], rolling_window: int = 30) -> LedgerStats:
    """Aggregate statistics over the terminal records, in ledger order.

    Pending records only show up in ``total_records`` and ``pending``.
    """
    finished = terminal_records(records)
    wins = sum(1 for r in finished if r.status == "win")
    losses = len(finished) - wins

    curve: list[float] = []
    cumulative = 0.0
    peak = 0.0
    max_drawdown = 0.0
    longest_losing = 0
    current_losing = 0
    for record in finished:
        cumulative += record.signed_r
        curve.append(round(cumulative, 4))
        peak = max(peak, cumulative)
        max_drawdown = max(max_drawdown, peak - cumulative)
        if record.status == "loss":
            current_losing += 1
            longest_losing = max(longest_losing, current_losing)
        else:
            current_losing = 0

    window = max(1, int(rolling_window))
    return LedgerStats(
        total_records=len(records),
        pending=sum(1 for r in records if r.status == "pending"),
        count=len(finished),
        wins=wins,
        losses=losses,
        win_rate=_win_rate_pct(finished),
        avg_r=round(cumulative / len(finished), 4) if finished else 0.0,
        total_r=round(cumulative, 4),
        cumulative_r_curve=curve,
        max_drawdown=round(max_drawdown, 4),
        max_consecutive_losses=longest_losing,
        current_consecutive_losses=current_losing,
        rolling_window=window,
        rolling_win_rate=_win_rate_pct(finished[-window:]),
    )


def format_summary(stats: LedgerStats) -> str:
    return (
        f"- 總筆數：{stats.count}\n"
        f"- 勝率：約 {stats.win_rate:.2f}%（近 {stats.rolling_window} 筆：{stats.rolling_win_rate:.2f}%）\n"
        f"- 連續虧損：{stats.current_consecutive_losses} 單\n"
        f"- 累積 R 值：約 {stats.total_r:.2f} R（平均 {stats.avg_r:.2f} R）\n"
        f"- 最大回撤：{stats.max_drawdown:.2f} R"
    )
