from __future__ import annotations

from typing import Any

from .ledger import Ledger


class StatsProjector:
    """Read-only view of the ledger for the dashboard."""

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    def get_stats(self) -> dict[str, Any]:
        return self.ledger.compute_stats().to_dict()

    def get_records(self, limit: int | None = None, offset: int = 0) -> list[dict[str, Any]]:
        """Newest first; ``limit=None`` returns everything after ``offset``."""
        newest_first = list(reversed(self.ledger.records()))
        start = max(0, offset)
        end = None if limit is None else start + max(0, limit)
        return [record.to_dict() for record in newest_first[start:end]]
