"""
Structured JSON event logger for the market process.

Emits one JSON object per line to stderr so a log aggregator can follow
session changes, settled trades and rejected orders without parsing prose.

Optional webhook: when configured, alert-level events (session_changed,
order_rejected, error) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from typing import Any

from market_core.notifier import ChangeEvent, ChangeNotifier

logger = logging.getLogger("market.events")


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        source: str = "market",
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._source = source
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._ALERT_EVENTS = {
            "session_changed",
            "order_rejected",
            "error",
        }

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "source": self._source,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in self._ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def session_changed(self, active: str | None, statuses: dict[str, str]) -> dict:
        return self._emit("session_changed", active=active, statuses=statuses)

    def trade_committed(
        self,
        trade_id: str,
        account_id: str,
        trade_type: str,
        stock_id: str,
        qty: int,
        price: float,
        session_id: str,
    ) -> dict:
        return self._emit(
            "trade_committed",
            trade_id=trade_id,
            account=account_id,
            type=trade_type,
            stock=stock_id,
            qty=qty,
            price=price,
            session=session_id,
        )

    def order_rejected(self, kind: str, reason: str) -> dict:
        return self._emit("order_rejected", kind=kind, reason=reason)

    def commit_retry(self, attempt: int, delay_s: float) -> dict:
        return self._emit("commit_retry", attempt=attempt, delay_s=round(delay_s, 3))

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)

    def shutdown(self, ticks: int) -> dict:
        return self._emit("shutdown", ticks=ticks)

    # ---------- notifier bridge ----------

    def on_change(self, event: ChangeEvent) -> None:
        if event.entity == "sessions" and isinstance(event.payload, list):
            statuses = {s["id"]: s["status"] for s in event.payload}
            active = next((sid for sid, st in statuses.items() if st == "active"), None)
            self.session_changed(active, statuses)
        elif event.entity == "trades" and isinstance(event.payload, dict):
            t = event.payload
            self.trade_committed(
                t["id"], t["accountId"], t["type"], t["stockId"], t["quantity"], t["price"], t["sessionId"],
            )

    def attach(self, notifier: ChangeNotifier) -> None:
        notifier.subscribe("sessions", self.on_change)
        notifier.subscribe("trades", self.on_change)
