"""Quick display of the decision ledger and its statistics."""
import argparse
from pathlib import Path

from coach_relay.ledger import Ledger
from coach_relay.projector import StatsProjector
from coach_relay.settings import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Show ledger statistics and latest records")
    parser.add_argument("--path", type=Path, default=settings.ledger_path)
    parser.add_argument("--limit", type=int, default=10)
    args = parser.parse_args()

    projector = StatsProjector(Ledger(args.path))
    stats = projector.get_stats()

    print(f"  Records: {stats['total_records']}  |  Pending: {stats['pending']}  |  Closed: {stats['count']}")
    print(f"  Win Rate: {stats['win_rate']:.2f}%  (last {stats['rolling_window']}: {stats['rolling_win_rate']:.2f}%)")
    print(f"  Total R: {stats['total_r']:+.2f}  |  Avg R: {stats['avg_r']:+.2f}  |  Max DD: {stats['max_drawdown']:.2f}R")
    print(f"  Losing streak: {stats['current_consecutive_losses']} (max {stats['max_consecutive_losses']})")
    print()

    records = projector.get_records(limit=args.limit)
    if not records:
        print("No ledger records found.")
        return
    for r in records:
        print(
            f"  {r['created_at'][:19]}  [{r['status']:>7}]  {r['symbol'] or '-':<10} {r['direction']:<7} "
            f"entry={r['entry']}  stop={r['stop']}  risk={r['risk_r']}R  {r['note']}"
        )


if __name__ == "__main__":
    main()
