"""Tests for TelegramPublisher plugin (telegram.publisher.v1)."""

from __future__ import annotations

from decimal import Decimal

import httpx

from yieldbox.contracts import RunResult
from yieldbox.plugins.publisher import telegram
from yieldbox.plugins.publisher.telegram import TelegramPublisher, _format_plan, _format_run_summary


def _result(**kw) -> RunResult:
    base = dict(
        run_id="sim_earn_v1__20260101T000000Z",
        exchange="sim.earn.v1",
        include_locked=False,
        balances={"USDT": Decimal("150"), "USDC": Decimal("0.5")},
        plan=[
            {"product_id": "USDT001", "currency": "USDT", "effective_yield": Decimal("0.07"),
             "required_amount": Decimal("100"), "kind": "flexible", "tier": "0-100USDT"},
            {"product_id": "USDT001", "currency": "USDT", "effective_yield": Decimal("0.05"),
             "required_amount": None, "kind": "flexible", "tier": None},
        ],
        subscriptions=[
            {"product_id": "USDT001", "currency": "USDT", "amount": Decimal("100"),
             "effective_yield": Decimal("0.07"), "kind": "flexible", "tier": "0-100USDT"},
        ],
        swept=[],
        halt_reason="unbounded_base_step",
        steps_evaluated=2,
    )
    base.update(kw)
    return RunResult(**base)


class _Recorder:
    def __init__(self):
        self.sent = []

    def __call__(self, url, json=None, timeout=None):
        self.sent.append((url, json))
        return httpx.Response(200, json={"ok": True})


class TestFormatting:

    def test_summary(self):
        text = _format_run_summary(_result())
        assert "Yield Allocator Report" in text
        assert "sim.earn.v1" in text
        assert "USDT: 150.00" in text
        assert "unbounded_base_step" in text

    def test_summary_error(self):
        text = _format_run_summary(_result(success=False, error="exchange_call_failed (sim.earn.v1): boom"))
        assert "FAILED" in text
        assert "boom" in text

    def test_plan_table(self):
        text = _format_plan(_result().to_payload()["plan"])
        assert "7.00%" in text
        assert "all" in text

    def test_long_plan_truncated(self):
        plan = _result().to_payload()["plan"] * 8
        assert "... 6 more" in _format_plan(plan)


class TestPublish:

    def test_skips_without_credentials(self, monkeypatch, caplog):
        monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
        monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
        rec = _Recorder()
        monkeypatch.setattr(telegram.httpx, "post", rec)
        TelegramPublisher().publish(_result(), {})
        assert rec.sent == []
        assert "not configured" in caplog.text

    def test_sends_summary_plan_and_subscriptions(self, monkeypatch):
        monkeypatch.setenv("MY_TOKEN", "t0k")
        monkeypatch.setenv("MY_CHAT", "42")
        rec = _Recorder()
        monkeypatch.setattr(telegram.httpx, "post", rec)
        TelegramPublisher().publish(_result(), {"telegram_token_env": "MY_TOKEN", "telegram_chat_id_env": "MY_CHAT"})
        assert len(rec.sent) == 3
        url, body = rec.sent[0]
        assert url == "https://api.telegram.org/bott0k/sendMessage"
        assert body["chat_id"] == "42"
        assert body["parse_mode"] == "HTML"
        assert "Subscriptions" in rec.sent[2][1]["text"]

    def test_explicit_params_and_swept(self, monkeypatch):
        rec = _Recorder()
        monkeypatch.setattr(telegram.httpx, "post", rec)
        swept = [{"product_id": "USDC001", "currency": "USDC", "amount": Decimal("0.5"),
                  "effective_yield": None, "kind": "flexible", "tier": None}]
        TelegramPublisher().publish(_result(swept=swept), {"telegram_token": "x", "telegram_chat_id": "1"})
        assert len(rec.sent) == 4
        assert "Swept" in rec.sent[3][1]["text"]

    def test_http_error_is_logged_not_raised(self, monkeypatch, caplog):
        def boom(*args, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(telegram.httpx, "post", boom)
        out = telegram._send_telegram_message("t", "1", "hi")
        assert out["ok"] is False
        assert "Telegram send failed" in caplog.text
