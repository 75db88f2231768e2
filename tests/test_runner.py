"""Tests for yieldbox.runner (run_allocation and handler).

Self-contained: every run goes through SimEarnExchange with zero call delay.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import pytest

from yieldbox import events as ev
from yieldbox.config import AllocatorConfig
from yieldbox.contracts import RunResult
from yieldbox.events import RecordingEventSink
from yieldbox.exceptions import ExchangeError
from yieldbox.planner import INSUFFICIENT_BALANCE, UNBOUNDED_BASE
from yieldbox.plugins.exchange.sim import SimEarnExchange
from yieldbox.runner import handler, run_allocation

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CONFIG = AllocatorConfig(call_delay_seconds=0)


def _flex(product_id: str, asset: str, rate: str, tiers: dict | None = None) -> dict[str, Any]:
    row: dict[str, Any] = {"productId": product_id, "asset": asset, "latestAnnualPercentageRate": rate, "isSoldOut": False}
    if tiers:
        row["tierAnnualPercentageRate"] = tiers
    return row


def _exchange(**kw) -> SimEarnExchange:
    kw.setdefault("flexible_products", [
        _flex("USDT001", "USDT", "0.05", {"0-200USDT": "0.03"}),
        _flex("USDC001", "USDC", "0.04"),
        _flex("FDUSD001", "FDUSD", "0.06", {"0-100FDUSD": "0.02"}),
    ])
    return SimEarnExchange(**kw)


class TestRunAllocation:

    # ------------------------------------------------------------------
    # 1. Full pipeline
    # ------------------------------------------------------------------

    def test_end_to_end(self):
        ex = _exchange(
            funding={"USDT": "100"},
            spot={"USDC": "200.4", "FDUSD": "1"},
            positions={"USDT001": {"asset": "USDT", "amount": "300"}},
        )
        sink = RecordingEventSink()
        result = run_allocation(ex, CONFIG, events=sink, run_id="r1")

        assert isinstance(result, RunResult)
        assert result.success is True
        assert result.balances == {"USDT": Decimal("400"), "USDC": Decimal("200.4"), "FDUSD": Decimal("1")}

        # Pool after settlement: 100 + 300 + 200 USDT; 0.4 USDC and 1 FDUSD stay (dust).
        # Plan: USDT tier 8% (200), FDUSD tier 8% (100), FDUSD base 6%, USDT base 5%, USDC 4%.
        assert [(s["product_id"], s["tier"]) for s in result.plan] == [
            ("USDT001", "0-200USDT"),
            ("FDUSD001", "0-100FDUSD"),
            ("FDUSD001", None),
            ("USDT001", None),
            ("USDC001", None),
        ]
        assert [(s["product_id"], s["amount"]) for s in result.subscriptions] == [
            ("USDT001", Decimal("200")),
            ("FDUSD001", Decimal("100")),
            ("FDUSD001", Decimal("301")),
        ]
        assert result.halt_reason is not None
        assert result.steps_evaluated == 3

        # Sweep picks up the USDC dust.
        assert [(s["product_id"], s["amount"]) for s in result.swept] == [("USDC001", Decimal("0.4"))]
        assert ex.spot == {"USDT": Decimal("0"), "USDC": Decimal("0"), "FDUSD": Decimal("0")}

        names = sink.names()
        assert names[0] == ev.RUN_START
        assert names[1] == ev.BALANCES_AGGREGATED
        assert names[-1] == ev.RUN_END

    def test_tiered_currency_scenario(self):
        ex = SimEarnExchange(
            spot={"USDT": "50"},
            flexible_products=[
                _flex("USDT001", "USDT", "0.05"),
                _flex("USDC001", "USDC", "0.05", {"100-200USDT": "0.01"}),
            ],
        )
        result = run_allocation(ex, CONFIG)
        assert result.plan[0]["tier"] == "100-200USDT"
        assert result.halt_reason == INSUFFICIENT_BALANCE
        assert [(s["product_id"], s["amount"]) for s in result.subscriptions] == [("USDC001", Decimal("50"))]
        assert result.swept == []

    def test_locked_products_opt_in(self):
        locked = [{"projectId": "USDT*90", "detail": {"asset": "USDT", "apr": "0.20", "isSoldOut": False}}]
        ex = _exchange(spot={"USDT": "10"}, locked_products=locked)
        result = run_allocation(ex, CONFIG, include_locked=True)
        assert result.include_locked is True
        assert result.subscriptions[0]["product_id"] == "USDT*90"
        assert result.subscriptions[0]["kind"] == "locked"
        assert result.halt_reason == UNBOUNDED_BASE

        ex = _exchange(spot={"USDT": "10"}, locked_products=locked)
        result = run_allocation(ex, CONFIG)
        assert all(s["kind"] == "flexible" for s in result.plan)

    def test_conversion_failure_does_not_abort(self):
        ex = _exchange(spot={"USDT": "10", "USDC": "50"}, reject_symbols={"USDCUSDT": "Market is closed."})
        sink = RecordingEventSink()
        result = run_allocation(ex, CONFIG, events=sink)
        assert sink.of(ev.CONVERSION_FAILED)
        assert result.success is True
        # USDC could not be sold, so the sweep parks it.
        assert ("USDC001", Decimal("50")) in [(s["product_id"], s["amount"]) for s in result.swept]

    def test_exchange_errors_propagate(self):
        ex = MagicMock()
        ex.meta.name = "mock"
        ex.get_funding_balance.side_effect = ExchangeError("mock", "Way too much request weight used")
        with pytest.raises(ExchangeError):
            run_allocation(ex, CONFIG)

    def test_payload_is_json_serialisable(self):
        ex = _exchange(spot={"USDT": "12.5"})
        payload = run_allocation(ex, CONFIG, run_id="r2").to_payload()
        text = json.dumps(payload)
        assert payload["success"] is True
        assert payload["run_id"] == "r2"
        assert payload["balances"]["USDT"] == "12.5"
        assert '"halt_reason"' in text


class TestHandler:

    def test_success_payload(self):
        ex = _exchange(spot={"USDT": "20"})
        payload = handler(None, None, config=CONFIG, exchange=ex)
        assert payload["success"] is True
        assert payload["exchange"] == "sim.earn.v1"
        assert payload["subscriptions"][0]["product_id"] == "USDT001"

    def test_failure_payload(self):
        ex = MagicMock()
        ex.meta.name = "mock"
        ex.get_funding_balance.return_value = "0"
        ex.get_earn_balance.return_value = "0"
        ex.get_spot_balance.side_effect = ExchangeError("mock", "Invalid API-key, IP, or permissions for action.")
        sink = RecordingEventSink()
        payload = handler("k", "s", config=CONFIG, exchange=ex, events=sink)
        assert payload["success"] is False
        assert "Invalid API-key" in payload["error"]
        assert sink.of(ev.RUN_FAILED)[0]["error_type"] == "ExchangeError"

    def test_failure_is_logged(self, caplog):
        ex = MagicMock()
        ex.meta.name = "mock"
        ex.get_funding_balance.side_effect = RuntimeError("boom")
        with caplog.at_level("ERROR", logger="yieldbox.runner"):
            payload = handler(None, None, config=CONFIG, exchange=ex)
        assert payload == {"success": False, "run_id": payload["run_id"], "error": "boom"}
        assert "failed" in caplog.text

    def test_missing_credentials_reported(self, monkeypatch):
        monkeypatch.delenv("BINANCE_API_KEY", raising=False)
        monkeypatch.delenv("BINANCE_API_SECRET", raising=False)
        payload = handler(None, None, config=CONFIG)
        assert payload["success"] is False
        assert "Missing credentials" in payload["error"]

    def test_builds_binance_exchange_from_credentials(self, monkeypatch):
        created = {}

        def fake_client(key, secret, testnet=False):
            created.update(key=key, secret=secret)
            client = MagicMock()
            client.funding_wallet.return_value = []
            client.get_asset_balance.return_value = None
            client.get_simple_earn_flexible_product_position.return_value = {"rows": [], "total": 0}
            client.get_simple_earn_locked_product_position.return_value = {"rows": [], "total": 0}
            client.get_simple_earn_flexible_product_list.return_value = {"rows": [], "total": 0}
            return client

        monkeypatch.setattr("yieldbox.plugins.exchange.binance.Client", fake_client)
        payload = handler("key-1", "secret-1", config=CONFIG)
        assert created == {"key": "key-1", "secret": "secret-1"}
        assert payload["success"] is True
        assert payload["exchange"] == "binance.earn.v1"
        assert payload["plan"] == []

    def test_publishers_receive_result(self):
        publisher = MagicMock()
        ex = _exchange(spot={"USDT": "20"})
        handler(None, None, config=CONFIG, exchange=ex, publishers=[(publisher, {"k": "v"})])
        result, params = publisher.publish.call_args.args
        assert isinstance(result, RunResult)
        assert params == {"k": "v"}

    def test_publisher_failure_does_not_fail_run(self):
        publisher = MagicMock()
        publisher.publish.side_effect = RuntimeError("telegram down")
        ex = _exchange(spot={"USDT": "20"})
        payload = handler(None, None, config=CONFIG, exchange=ex, publishers=[(publisher, {})])
        assert payload["success"] is True
