from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import requests

from coach_relay.ledger import Ledger
from coach_relay.models import DecisionRecord
from coach_relay.risk import RiskGate, RiskPolicy

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_record(
    status: str = "pending",
    risk_r: float = 1.0,
    created_at: datetime | None = None,
    closed_at: datetime | None = None,
    symbol: str = "BTCUSDT",
) -> DecisionRecord:
    created = created_at or NOW - timedelta(hours=1)
    closed = closed_at
    if closed is None and status != "pending":
        closed = created + timedelta(minutes=30)
    return DecisionRecord(
        created_at=created.isoformat(),
        symbol=symbol,
        direction="long",
        risk_r=risk_r,
        status=status,  # type: ignore[arg-type]
        closed_at=closed.isoformat() if closed else None,
    )


def trade_reply(**overrides: Any) -> str:
    payload = {
        "is_trade": True,
        "symbol": "BTCUSDT",
        "direction": "long",
        "entry": 50000,
        "stop": 49000,
        "tp1": 51000,
        "tp15": 51500,
        "risk_r": 1,
        "note": "OBV 收回 + 十字星",
    }
    payload.update(overrides)
    return "符合盤整，十字星成立，可以考慮進場。\n" + json.dumps(payload, ensure_ascii=False)


class FakeGenerator:
    """Scripted stand-in for GeminiClient.generate_text."""

    def __init__(self, replies: list[str] | None = None, error: Exception | None = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.calls: list[tuple[str, str, Any]] = []
        self.model = "fake-model"
        self.api_key = "fake-key-123456"

    def generate_text(self, system_prompt: str, user_text: str, media: Any = None) -> str:
        self.calls.append((system_prompt, user_text, media))
        if self.error is not None:
            raise self.error
        if not self.replies:
            return "沒有更多回覆"
        return self.replies.pop(0)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, content: bytes = b"", text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = content
        self.text = text

    def json(self) -> Any:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def _next(self, **kwargs: Any) -> FakeResponse:
        self.calls.append(kwargs)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next(url=url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next(url=url, **kwargs)


@pytest.fixture
def ledger(tmp_path) -> Ledger:
    return Ledger(tmp_path / "trades.json", lock_timeout_seconds=2, write_retries=2, rolling_window=30)


@pytest.fixture
def policy() -> RiskPolicy:
    return RiskPolicy(max_consecutive_losses=3, max_daily_loss_r=-3.0, timezone="UTC")


@pytest.fixture
def gate(policy: RiskPolicy) -> RiskGate:
    return RiskGate(policy)


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda _seconds: None)


def seed_ledger(ledger: Ledger, records: list[DecisionRecord]) -> None:
    ledger.path.parent.mkdir(parents=True, exist_ok=True)
    ledger.path.write_text(json.dumps([r.to_dict() for r in records], ensure_ascii=False), encoding="utf-8")


class FakeLine:
    def __init__(self, content: bytes = b"\xff\xd8fake-jpeg", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.replies: list[tuple[str, str]] = []
        self.downloads: list[str] = []

    def is_configured(self) -> bool:
        return True

    def reply(self, reply_token: str, text: str) -> bool:
        self.replies.append((reply_token, text))
        return True

    def download_content(self, message_id: str) -> bytes:
        self.downloads.append(message_id)
        if self.error is not None:
            raise self.error
        return self.content
