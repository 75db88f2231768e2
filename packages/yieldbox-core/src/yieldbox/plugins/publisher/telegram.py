"""Telegram publisher plugin.

Sends the outcome of an allocation run to a Telegram chat: the consolidated
pool, the head of the ranked plan, what was subscribed, and the halt reason
or error.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from yieldbox.contracts import PluginMeta, RunResult

logger = logging.getLogger(__name__)

PLAN_ROWS = 10


# ------------------------------------------------------------------
# Formatting helpers
# ------------------------------------------------------------------


def _pct(value: Any) -> str:
    if value is None:
        return "-"
    return f"{float(Decimal(str(value)) * 100):.2f}%"


def _amt(value: Any) -> str:
    if value is None:
        return "all"
    return f"{float(Decimal(str(value))):,.2f}"


def _format_run_summary(result: RunResult) -> str:
    status = "OK" if result.success else "FAILED"
    lines = [
        "<b>Yield Allocator Report</b>",
        f"Run: <code>{result.run_id}</code>",
        f"Exchange: <b>{result.exchange}</b> (locked products: {'on' if result.include_locked else 'off'})",
        f"Status: <b>{status}</b>",
        "",
        "Pool",
    ]
    for currency, amount in result.balances.items():
        lines.append(f"{currency}: {_amt(amount)}")
    if result.error:
        lines += ["", f"Error: {result.error}"]
    else:
        lines += ["", f"Steps evaluated: {result.steps_evaluated}/{len(result.plan)}"]
        lines.append(f"Halt: {result.halt_reason or 'plan exhausted'}")
    return "\n".join(lines)


def _format_plan(plan: list[dict[str, Any]]) -> str:
    header = (
        "<b>Ranked Plan</b>\n<pre>"
        "PRODUCT       CCY     YIELD   REQUIRED\n"
        "--------------------------------------\n"
    )
    rows = []
    for step in plan[:PLAN_ROWS]:
        pid = str(step.get("product_id", ""))[:12].ljust(12)
        ccy = str(step.get("currency", ""))[:6].ljust(6)
        rows.append(f"{pid}  {ccy}{_pct(step.get('effective_yield')):>8} {_amt(step.get('required_amount')):>10}")
    more = f"\n... {len(plan) - PLAN_ROWS} more" if len(plan) > PLAN_ROWS else ""
    return header + "\n".join(rows) + more + "\n</pre>"


def _format_subscriptions(title: str, subs: list[dict[str, Any]]) -> str:
    rows = []
    for s in subs:
        rows.append(f"{s.get('product_id')}: {_amt(s.get('amount'))} {s.get('currency')} @ {_pct(s.get('effective_yield'))}")
    return f"<b>{title}</b>\n<pre>" + "\n".join(rows) + "\n</pre>"


def _send_telegram_message(
    token: str,
    chat_id: str,
    message: str,
    parse_mode: str = "HTML",
) -> dict[str, Any]:
    """Post a message to the Telegram Bot API via httpx."""
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        resp = httpx.post(
            url,
            json={"chat_id": chat_id, "text": message, "parse_mode": parse_mode},
            timeout=30,
        )
        return resp.json()
    except httpx.HTTPError as exc:
        logger.error("Telegram send failed: %s", exc)
        return {"ok": False, "error": str(exc)}


# ------------------------------------------------------------------
# Plugin
# ------------------------------------------------------------------


@dataclass
class TelegramPublisher:
    meta = PluginMeta(
        name="telegram.publisher.v1",
        kind="publisher",
        version="0.1.0",
        core_compat=">=0.1,<0.2",
        description="Send allocation results to Telegram (pool, ranked plan, subscriptions).",
        tags=("telegram", "notifications"),
        capabilities=("paper", "live"),
        params_schema={
            "type": "object",
            "properties": {
                "telegram_token_env": {
                    "type": "string",
                    "default": "TELEGRAM_TOKEN",
                    "description": "Env var name holding the bot token.",
                },
                "telegram_chat_id_env": {
                    "type": "string",
                    "default": "TELEGRAM_CHAT_ID",
                    "description": "Env var name holding the chat id.",
                },
                "telegram_token": {
                    "type": "string",
                    "description": "Explicit bot token (overrides env).",
                },
                "telegram_chat_id": {
                    "type": "string",
                    "description": "Explicit chat id (overrides env).",
                },
            },
        },
        examples=(
            "plugins:\n  publishers:\n    - name: telegram.publisher.v1\n      params:\n        telegram_token_env: TELEGRAM_TOKEN\n        telegram_chat_id_env: TELEGRAM_CHAT_ID",
        ),
    )

    def publish(self, result: RunResult, params: dict[str, Any]) -> None:
        """Send allocation run notifications to Telegram."""
        token = params.get("telegram_token") or os.environ.get(params.get("telegram_token_env", "TELEGRAM_TOKEN"), "")
        chat_id = params.get("telegram_chat_id") or os.environ.get(
            params.get("telegram_chat_id_env", "TELEGRAM_CHAT_ID"), ""
        )
        if not token or not chat_id:
            logger.warning("Telegram credentials not configured, skipping publish")
            return

        payload = result.to_payload()

        # 1. Summary
        _send_telegram_message(token, chat_id, _format_run_summary(result))

        # 2. Ranked plan
        if payload["plan"]:
            _send_telegram_message(token, chat_id, _format_plan(payload["plan"]))

        # 3. Planner subscriptions
        if payload["subscriptions"]:
            _send_telegram_message(token, chat_id, _format_subscriptions("Subscriptions", payload["subscriptions"]))

        # 4. Sweep
        if payload["swept"]:
            _send_telegram_message(token, chat_id, _format_subscriptions("Swept", payload["swept"]))

        logger.info("Telegram notifications sent for %s", result.run_id)
