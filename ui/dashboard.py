from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
import streamlit as st

from coach_relay.ledger import Ledger, LedgerError
from coach_relay.models import parse_iso_datetime
from coach_relay.projector import StatsProjector
from coach_relay.risk import RiskGate, load_risk_policy
from coach_relay.settings import settings

RECORD_COLUMNS = [
    "created_at",
    "status",
    "symbol",
    "direction",
    "entry",
    "stop",
    "tp1",
    "tp15",
    "risk_r",
    "regime",
    "strategy_allowed",
    "closed_at",
    "note",
]


def records_frame(records: list[dict[str, Any]]) -> pd.DataFrame:
    if not records:
        return pd.DataFrame(columns=RECORD_COLUMNS)
    frame = pd.DataFrame(records)
    for column in RECORD_COLUMNS:
        if column not in frame.columns:
            frame[column] = None
    return frame[RECORD_COLUMNS]


def equity_frame(stats: dict[str, Any]) -> pd.DataFrame:
    curve = stats.get("cumulative_r_curve") or []
    frame = pd.DataFrame({"trade": range(1, len(curve) + 1), "cumulative_r": curve})
    frame["peak_r"] = frame["cumulative_r"].cummax().clip(lower=0.0)
    frame["drawdown_r"] = frame["peak_r"] - frame["cumulative_r"]
    return frame.set_index("trade")


def minutes_since(ts: str | None) -> float | None:
    parsed = parse_iso_datetime(ts)
    if parsed is None:
        return None
    return (datetime.now(timezone.utc) - parsed).total_seconds() / 60.0


st.set_page_config(page_title="Coach Relay Ledger", page_icon="📒", layout="wide")
st.title("📒 Coach Relay Ledger")
st.caption("Read-only view of logged trade decisions and risk state.")

with st.sidebar:
    st.subheader("Source")
    ledger_path = Path(st.text_input("Ledger file", str(settings.ledger_path)))
    record_limit = st.slider("Records shown", 10, 500, 50, 10)
    status_filter = st.multiselect("Status", ["pending", "win", "loss"], default=["pending", "win", "loss"])
    if st.button("Refresh data now"):
        st.rerun()

ledger = Ledger(ledger_path)
projector = StatsProjector(ledger)
try:
    stats = projector.get_stats()
    records = projector.get_records(limit=record_limit)
    gate_decision = RiskGate(load_risk_policy()).evaluate(ledger.records())
except LedgerError as exc:
    st.error(f"Ledger unavailable: {exc}")
    st.stop()

m1, m2, m3, m4, m5 = st.columns(5)
m1.metric("Closed Trades", stats["count"])
m2.metric("Win Rate", f"{stats['win_rate']:.2f}%")
m3.metric(f"Win Rate (last {stats['rolling_window']})", f"{stats['rolling_win_rate']:.2f}%")
m4.metric("Total R", f"{stats['total_r']:+.2f}")
m5.metric("Max Drawdown", f"{stats['max_drawdown']:.2f} R")

r1, r2, r3, r4 = st.columns(4)
r1.metric("Open (pending)", stats["pending"])
r2.metric("Losing Streak", stats["current_consecutive_losses"])
r3.metric("Today R", f"{gate_decision.state.today_r:+.2f}")
r4.metric("Risk Gate", "OPEN" if gate_decision.allow else "BLOCKED")

if gate_decision.allow:
    st.success(f"Risk gate open for trading day {gate_decision.state.trading_day}.")
else:
    st.warning(gate_decision.message)

st.markdown("#### Equity Curve (R)")
curve = equity_frame(stats)
if curve.empty:
    st.info("No closed trades yet. Close a record with `#結果 勝` / `#結果 敗` to start the curve.")
else:
    st.line_chart(curve[["cumulative_r", "peak_r"]], use_container_width=True)
    st.area_chart(curve[["drawdown_r"]], use_container_width=True)

st.markdown("#### Decision Records (newest first)")
table = records_frame(records)
if status_filter:
    table = table[table["status"].isin(status_filter)]
if table.empty:
    st.info("No ledger records found.")
else:
    st.dataframe(table, use_container_width=True, hide_index=True)
    newest_age = minutes_since(str(table.iloc[0]["created_at"] or ""))
    if newest_age is not None:
        st.caption(f"Latest decision logged {newest_age:.1f} minutes ago.")

with st.expander("Raw stats JSON"):
    st.json(stats)
