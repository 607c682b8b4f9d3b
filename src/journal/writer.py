"""
Structured journal: append-only JSON lines. One line per session transition,
committed trade, rejected order or reset.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from market_core.notifier import ChangeEvent


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "to_record"):
        return _serialize(obj.to_record())
    if hasattr(obj, "__dict__") and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in vars(obj).items() if not k.startswith("_")}
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with open(self._path, "a") as f:
            f.write(line)
        if self._echo:
            print(line.rstrip())

    def session(self, action: str, session_id: str | None, status: str | None, **extra: Any) -> None:
        self._write("session", {"action": action, "session_id": session_id, "status": status, **extra})

    def trade(
        self,
        trade_id: str,
        account_id: str,
        trade_type: str,
        stock_id: str,
        qty: int,
        price: float,
        session_id: str,
        **extra: Any,
    ) -> None:
        self._write(
            "trade",
            {
                "trade_id": trade_id,
                "account_id": account_id,
                "type": trade_type,
                "stock_id": stock_id,
                "qty": qty,
                "price": price,
                "session_id": session_id,
                **extra,
            },
        )

    def rejection(self, kind: str, reason: str, **extra: Any) -> None:
        self._write("rejection", {"kind": kind, "reason": reason, **extra})

    def reset(self, scope: str, **extra: Any) -> None:
        self._write("reset", {"scope": scope, **extra})

    def on_change(self, event: ChangeEvent) -> None:
        """ChangeNotifier subscriber: journal session changes, trades and clears."""
        if event.entity == "sessions" and isinstance(event.payload, list):
            active = next((s for s in event.payload if s.get("status") == "active"), None)
            self.session(
                "changed",
                active["id"] if active else None,
                "active" if active else None,
                statuses={s["id"]: s["status"] for s in event.payload},
            )
        elif event.entity == "trades" and event.payload == []:
            self.reset("trades")
        elif event.entity == "trades" and isinstance(event.payload, dict):
            t = event.payload
            self.trade(
                t["id"], t["accountId"], t["type"], t["stockId"], t["quantity"], t["price"], t["sessionId"],
                total=t["total"],
            )
