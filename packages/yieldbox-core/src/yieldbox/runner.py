"""One allocation invocation, end to end.

``run_allocation`` is the raising core: aggregate balances, consolidate into
the base currency, build the ranked plan, execute it, sweep the residue.
``handler`` is the trigger entry point: it builds the Binance exchange from
credentials, runs the allocation and always returns a JSON-serialisable
payload.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from . import events as ev
from .balances import fetch_snapshot
from .catalog import build_steps
from .config import AllocatorConfig
from .contracts import EventSink, ExchangeClient, PublisherPlugin, RunResult
from .events import FanOutEventSink, LoggingEventSink
from .planner import AllocationPlanner
from .plugins.exchange import BinanceEarnExchange
from .settlement import consolidate
from .sweep import sweep

logger = logging.getLogger(__name__)


def _run_id(exchange_name: str) -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{exchange_name.replace('.', '_')}__{ts}"


def _exchange_name(exchange: ExchangeClient) -> str:
    meta = getattr(exchange, "meta", None)
    return meta.name if meta is not None else type(exchange).__name__


def run_allocation(
    exchange: ExchangeClient,
    config: Optional[AllocatorConfig] = None,
    *,
    include_locked: Optional[bool] = None,
    events: Optional[EventSink] = None,
    run_id: Optional[str] = None,
) -> RunResult:
    config = config or AllocatorConfig()
    if include_locked is None:
        include_locked = config.include_locked
    events = events or LoggingEventSink()
    name = _exchange_name(exchange)
    run_id = run_id or _run_id(name)

    events.emit(ev.RUN_START, run_id=run_id, exchange=name, include_locked=include_locked)

    snapshot = fetch_snapshot(exchange, config.tracked_currencies, max_workers=config.max_workers)
    pool = snapshot.pool
    events.emit(ev.BALANCES_AGGREGATED, balances=pool, total=snapshot.total())
    logger.info("Pool before settlement: %s", {c: format(a, "f") for c, a in pool.items()})

    report = consolidate(exchange, config, events)
    if report.failed:
        logger.warning("Conversions failed for %s", ", ".join(sorted(report.failed)))

    steps = build_steps(
        exchange,
        config.tracked_currencies,
        include_locked=include_locked,
        max_workers=config.max_workers,
    )
    plan = AllocationPlanner(exchange, config, events).run(steps)
    swept = sweep(exchange, config, events)

    result = RunResult(
        run_id=run_id,
        exchange=name,
        include_locked=include_locked,
        balances=pool,
        plan=[s.to_dict() for s in steps],
        subscriptions=[s.to_dict() for s in plan.ledger.subscriptions],
        swept=[s.to_dict() for s in swept],
        halt_reason=plan.halt_reason,
        steps_evaluated=plan.ledger.steps_evaluated,
    )
    events.emit(
        ev.RUN_END,
        run_id=run_id,
        subscriptions=len(result.subscriptions),
        swept=len(result.swept),
        halt_reason=result.halt_reason,
    )
    return result


def publish_result(result: RunResult, publishers: Sequence[Any]) -> None:
    """Hand the result to each ``(publisher, params)`` pair; failures are logged."""
    for publisher, params in publishers:
        try:
            publisher.publish(result, params or {})
        except Exception:
            logger.exception("Publisher %s failed", getattr(getattr(publisher, "meta", None), "name", publisher))


def handler(
    api_key: Optional[str],
    api_secret: Optional[str],
    include_locked: bool = False,
    *,
    config: Optional[AllocatorConfig] = None,
    exchange: Optional[ExchangeClient] = None,
    publishers: Sequence[tuple[PublisherPlugin, Dict[str, Any]]] = (),
    events: Optional[EventSink] = None,
) -> Dict[str, Any]:
    """Run one allocation and return ``{"success": ...}``; never raises."""
    config = config or AllocatorConfig()
    sink: EventSink = LoggingEventSink() if events is None else FanOutEventSink([LoggingEventSink(), events])
    name = _exchange_name(exchange) if exchange is not None else "binance.earn.v1"
    run_id = _run_id(name)
    try:
        if exchange is None:
            exchange = BinanceEarnExchange(api_key=api_key, api_secret=api_secret)
        result = run_allocation(exchange, config, include_locked=include_locked, events=sink, run_id=run_id)
    except Exception as exc:
        logger.exception("Allocation run %s failed", run_id)
        sink.emit(ev.RUN_FAILED, run_id=run_id, error=str(exc), error_type=type(exc).__name__)
        result = RunResult(
            run_id=run_id,
            exchange=name,
            include_locked=include_locked,
            success=False,
            error=str(exc),
        )
        publish_result(result, publishers)
        return {"success": False, "run_id": run_id, "error": str(exc)}

    publish_result(result, publishers)
    return result.to_payload()
