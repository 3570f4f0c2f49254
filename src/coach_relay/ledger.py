"""Append-only decision ledger stored as a single JSON array.

Every read goes back to disk so statistics never drift from what is
persisted.  Writes land in a temp file beside the ledger and are moved into
place with ``os.replace``; a crash mid-write leaves the previous file intact.
Content that does not decode to a list of records is quarantined next to the
ledger and the ledger restarts empty.  An I/O error on read raises
``LedgerReadError`` and leaves the file untouched.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from loguru import logger

from .models import DecisionRecord, LedgerStats, parse_iso_datetime, utc_now_iso, new_record_id
from .settings import settings
from .stats import compute_stats


class LedgerError(RuntimeError):
    pass


class LedgerWriteError(LedgerError):
    pass


class LedgerBusyError(LedgerError):
    pass


class LedgerReadError(LedgerError):
    pass


class NoOpenPosition(LookupError):
    """Raised when a close is requested but no record is pending."""


class Ledger:
    def __init__(
        self,
        path: Path | str | None = None,
        lock_timeout_seconds: float | None = None,
        write_retries: int | None = None,
        rolling_window: int | None = None,
    ) -> None:
        self.path = Path(path or settings.ledger_path)
        self.lock_timeout_seconds = lock_timeout_seconds or settings.ledger_lock_timeout_seconds
        self.write_retries = write_retries or settings.ledger_write_retries
        self.rolling_window = rolling_window or settings.stats_rolling_window
        self._lock = threading.RLock()
        self._dropped: list = []

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the ledger lock across a read-evaluate-write sequence."""
        if not self._lock.acquire(timeout=self.lock_timeout_seconds):
            raise LedgerBusyError(f"Ledger lock not acquired within {self.lock_timeout_seconds}s")
        try:
            yield
        finally:
            self._lock.release()

    # ── Reads ──

    def records(self) -> list[DecisionRecord]:
        with self.locked():
            return self._load()

    def compute_stats(self) -> LedgerStats:
        with self.locked():
            return compute_stats(self._load(), self.rolling_window)

    def latest_pending(self) -> DecisionRecord | None:
        for record in reversed(self.records()):
            if record.status == "pending":
                return record
        return None

    # ── Mutations ──

    def append(self, record: DecisionRecord) -> DecisionRecord:
        if record.status != "pending" or record.closed_at is not None:
            raise ValueError("New ledger records must be pending and unclosed")

        with self.locked():
            records = self._load()
            known_ids = {r.id for r in records}
            if not record.id:
                record.id = new_record_id()
            if record.id in known_ids:
                raise ValueError(f"Duplicate ledger record id {record.id}")

            created_at = parse_iso_datetime(record.created_at) or datetime.now(timezone.utc)
            if records:
                last_created = parse_iso_datetime(records[-1].created_at)
                if last_created is not None and created_at < last_created:
                    created_at = last_created
            record.created_at = created_at.isoformat()

            records.append(record)
            self._write(records)

        logger.info(
            "Ledger append {} {} {} entry={} stop={} risk={}R",
            record.id,
            record.symbol or "-",
            record.direction,
            record.entry,
            record.stop,
            record.risk_r,
        )
        return record

    def close_latest_pending(self, outcome: Literal["win", "loss"]) -> DecisionRecord:
        if outcome not in ("win", "loss"):
            raise ValueError(f"Unsupported outcome {outcome!r}")

        with self.locked():
            records = self._load()
            target: DecisionRecord | None = None
            for record in reversed(records):
                if record.status == "pending":
                    target = record
                    break
            if target is None:
                raise NoOpenPosition("No pending record to close")

            target.status = outcome
            target.closed_at = utc_now_iso()
            self._write(records)

        logger.info("Ledger close {} -> {} ({}R)", target.id, outcome, target.signed_r)
        return target

    # ── Storage ──

    def _load(self) -> list[DecisionRecord]:
        if not self.path.exists():
            self._dropped = []
            return []

        try:
            text = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            self._recover(f"unreadable content: {exc}")
            return []
        except OSError as exc:
            # I/O failure is not corruption: the file stays where it is
            raise LedgerReadError(f"Ledger read failed at {self.path}: {exc}") from exc

        try:
            raw = json.loads(text)
        except (ValueError, RecursionError) as exc:
            self._recover(f"unreadable content: {type(exc).__name__}: {str(exc)[:200]}")
            return []

        if not isinstance(raw, list):
            self._recover(f"expected a JSON array, found {type(raw).__name__}")
            return []

        records: list[DecisionRecord] = []
        dropped: list = []
        for item in raw:
            if not isinstance(item, dict):
                dropped.append(item)
                continue
            records.append(DecisionRecord.from_dict(item))
        if dropped:
            logger.error(
                "Ledger {} holds {} non-object entries; they are set aside on the next write",
                self.path,
                len(dropped),
            )
        self._dropped = dropped
        return records

    def _recover(self, reason: str) -> None:
        self._dropped = []
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        quarantine = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, quarantine)
            kept = f"moved to {quarantine}"
        except OSError as exc:
            kept = f"could not be moved aside: {exc}"
        logger.error(
            "LEDGER RESET (history lost): {} at {}; ledger restarts empty, original {}",
            reason,
            self.path,
            kept,
        )
        try:
            self._write([])
        except LedgerWriteError as exc:
            logger.error("Ledger reinitialisation failed: {}", exc)

    def _set_aside(self, entries: list) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self.path.with_name(f"{self.path.name}.dropped-{stamp}.json")
        try:
            target.write_text(json.dumps(entries, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise LedgerWriteError(f"Could not set aside non-object ledger entries: {exc}") from exc
        logger.error("Ledger non-object entries ({}) moved to {}", len(entries), target)

    def _write(self, records: list[DecisionRecord]) -> None:
        if self._dropped:
            self._set_aside(self._dropped)
            self._dropped = []
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)
        last_error: OSError | None = None

        for attempt in range(1, self.write_retries + 1):
            try:
                self._atomic_write(payload)
                return
            except OSError as exc:
                last_error = exc
                logger.warning("Ledger write failed attempt {}/{}: {}", attempt, self.write_retries, exc)
                if attempt < self.write_retries:
                    time.sleep(0.05 * attempt)

        raise LedgerWriteError(f"Ledger write failed after retries: {last_error}") from last_error

    def _atomic_write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f"{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
            raise
