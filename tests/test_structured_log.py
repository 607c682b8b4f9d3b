"""Tests for structured JSON event logger."""

import io
import json
from unittest.mock import patch

import pytest

from cli.structured_log import StructuredEventLogger
from market_core.contracts import Order
from market_core.service import Market


@pytest.fixture
def buf() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(buf: io.StringIO) -> StructuredEventLogger:
    return StructuredEventLogger("classroom", enabled=True, stream=buf)


def _records(buf: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buf.getvalue().splitlines()]


class TestEmit:
    """Basic event emission and format."""

    def test_session_changed_json(self, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.session_changed("S2", {"S1": "completed", "S2": "active"})
        record = json.loads(buf.getvalue().strip())
        assert record["event"] == "session_changed"
        assert record["source"] == "classroom"
        assert record["active"] == "S2"
        assert "ts" in record

    def test_trade_committed(self, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.trade_committed("T1", "U1", "short_sell", "AAA", 5, 50.0, "S1")
        record = json.loads(buf.getvalue().strip())
        assert record["event"] == "trade_committed"
        assert record["type"] == "short_sell"
        assert record["qty"] == 5

    def test_order_rejected(self, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.order_rejected("trading_closed", "Trading is currently disabled.")
        record = json.loads(buf.getvalue().strip())
        assert record["kind"] == "trading_closed"

    def test_commit_retry_rounds_delay(self, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.commit_retry(2, 0.123456)
        assert json.loads(buf.getvalue().strip())["delay_s"] == 0.123

    def test_error_and_shutdown(self, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.error("commit failed", "database is locked")
        logger.shutdown(4)
        assert [r["event"] for r in _records(buf)] == ["error", "shutdown"]

    def test_disabled_writes_nothing(self, buf: io.StringIO) -> None:
        quiet = StructuredEventLogger(enabled=False, stream=buf)
        record = quiet.error("x")
        assert buf.getvalue() == ""
        assert record["event"] == "error"


class TestWebhook:
    def test_alert_events_are_posted(self, buf: io.StringIO) -> None:
        log = StructuredEventLogger(stream=buf, webhook_url="https://hooks.example.test/x")
        with patch("cli.structured_log.urllib.request.urlopen") as urlopen:
            log.order_rejected("insufficient_balance", "no cash")
            log.trade_committed("T1", "U1", "buy", "AAA", 1, 1.0, "S1")
        assert urlopen.call_count == 1
        req = urlopen.call_args[0][0]
        assert json.loads(req.data)["event"] == "order_rejected"

    def test_webhook_failure_is_logged_not_raised(self, buf: io.StringIO) -> None:
        log = StructuredEventLogger(stream=buf, webhook_url="https://hooks.example.test/x")
        with patch("cli.structured_log.urllib.request.urlopen", side_effect=OSError("down")):
            log.error("boom")
        assert _records(buf)[0]["event"] == "error"


class TestNotifierBridge:
    def test_market_changes_become_events(self, market: Market, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.attach(market.notifier)
        market.scheduler.start()
        market.executor.submit(Order("U1", "AAA", "buy", 3))
        events = _records(buf)
        assert [e["event"] for e in events] == ["session_changed", "trade_committed"]
        assert events[0]["active"] == "S1"
        assert events[1]["account"] == "U1"

    def test_clear_does_not_emit_trade(self, market: Market, logger: StructuredEventLogger, buf: io.StringIO) -> None:
        logger.attach(market.notifier)
        market.executor.clear()
        assert _records(buf) == []
