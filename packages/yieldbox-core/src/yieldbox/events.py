"""Structured domain events.

The engine reports what it does (step evaluated, conversion attempted,
halt reason, ...) through an ``EventSink`` instead of logging directly, so
the backend can be swapped without touching the planner.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

RUN_START = "RUN_START"
BALANCES_AGGREGATED = "BALANCES_AGGREGATED"
REDEEMED = "REDEEMED"
TRANSFERRED = "TRANSFERRED"
CONVERSION_ATTEMPTED = "CONVERSION_ATTEMPTED"
CONVERSION_SKIPPED = "CONVERSION_SKIPPED"
CONVERSION_FAILED = "CONVERSION_FAILED"
STEP_EVALUATED = "STEP_EVALUATED"
JIT_BUY = "JIT_BUY"
SUBSCRIBED = "SUBSCRIBED"
PLAN_HALTED = "PLAN_HALTED"
PLAN_EXHAUSTED = "PLAN_EXHAUSTED"
SWEEP_SUBSCRIBED = "SWEEP_SUBSCRIBED"
RUN_END = "RUN_END"
RUN_FAILED = "RUN_FAILED"


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return format(obj, "f")
    return str(obj)


def event_line(event: str, **payload: Any) -> str:
    obj = {"event": event, **payload}
    return json.dumps(obj, ensure_ascii=False, default=_default)


@dataclass
class LoggingEventSink:
    """Writes each event as one JSON line to a logger."""

    logger_name: str = "yieldbox.events"
    level: int = logging.INFO

    def emit(self, event: str, **payload: Any) -> None:
        logging.getLogger(self.logger_name).log(self.level, event_line(event, **payload))


@dataclass
class RecordingEventSink:
    """Keeps events in memory; handy for tests and for building reports."""

    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def emit(self, event: str, **payload: Any) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


@dataclass
class FanOutEventSink:
    """Forwards every event to several sinks."""

    sinks: list[Any] = field(default_factory=list)

    def emit(self, event: str, **payload: Any) -> None:
        for sink in self.sinks:
            sink.emit(event, **payload)
