"""Allocation planner.

Walks the yield-ranked ``AllocationStep`` list and executes it against the
exchange. Each step handler takes the ``Ledger`` (live base-currency pool
plus what has been subscribed so far) and returns either ``Continue`` or
``Halt`` carrying the updated ledger; the drive loop in
``AllocationPlanner.run`` stops on the first ``Halt``.

Step handling:

===============  =========  ==============================================
currency         bound      action
===============  =========  ==============================================
base             bounded    subscribe ``required_amount``; continue
base             unbounded  subscribe the whole pool; halt
non-base         bounded    buy ``required_amount``, subscribe it; continue.
                            On insufficient balance: spend all base on a
                            best-effort buy, subscribe what arrived; halt
non-base         unbounded  spend all base on a buy, subscribe it; halt
===============  =========  ==============================================

The live base balance is re-read from the exchange before every step. An
empty base pool halts a base step at once; a non-base step still subscribes
whatever of its currency the account already holds.
Nothing is ever subscribed beyond the balance the exchange reports.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from . import events as ev
from .amounts import ZERO, to_decimal
from .catalog import AllocationStep
from .config import AllocatorConfig
from .contracts import EventSink, ExchangeClient
from .exceptions import is_insufficient_balance
from .settlement import buy_exact, buy_with_all_base, pause

logger = logging.getLogger(__name__)

UNBOUNDED_BASE = "unbounded_base_step"
UNBOUNDED_CONVERSION = "unbounded_conversion_step"
INSUFFICIENT_BALANCE = "insufficient_balance"
FUNDS_EXHAUSTED = "funds_exhausted"


@dataclass(frozen=True)
class Subscription:
    product_id: str
    currency: str
    amount: Decimal
    effective_yield: Optional[Decimal] = None
    kind: str = "flexible"
    tier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "currency": self.currency,
            "amount": self.amount,
            "effective_yield": self.effective_yield,
            "kind": self.kind,
            "tier": self.tier,
        }


@dataclass
class Ledger:
    """Mutable planning state threaded through the step handlers."""

    base_currency: str
    available: Decimal = ZERO
    subscriptions: List[Subscription] = field(default_factory=list)
    steps_evaluated: int = 0

    def refresh(self, available: Decimal) -> "Ledger":
        self.available = available
        return self

    def record(self, subscription: Subscription) -> "Ledger":
        self.subscriptions.append(subscription)
        if subscription.currency == self.base_currency:
            self.available = max(ZERO, self.available - subscription.amount)
        return self

    def subscribed(self, currency: Optional[str] = None) -> Decimal:
        return sum(
            (s.amount for s in self.subscriptions if currency is None or s.currency == currency),
            ZERO,
        )


@dataclass(frozen=True)
class Continue:
    ledger: Ledger


@dataclass(frozen=True)
class Halt:
    ledger: Ledger
    reason: str


StepOutcome = Union[Continue, Halt]


@dataclass(frozen=True)
class PlanReport:
    ledger: Ledger
    halt_reason: Optional[str] = None

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None


@dataclass
class AllocationPlanner:
    exchange: ExchangeClient
    config: AllocatorConfig
    events: EventSink

    # ------------------------------------------------------------------
    # Drive loop
    # ------------------------------------------------------------------

    def run(self, steps: Sequence[AllocationStep]) -> PlanReport:
        ledger = Ledger(base_currency=self.config.base_currency)
        for index, step in enumerate(steps):
            ledger = ledger.refresh(self._live(self.config.base_currency))
            ledger.steps_evaluated += 1
            self.events.emit(
                ev.STEP_EVALUATED,
                index=index,
                product_id=step.product_id,
                currency=step.currency,
                effective_yield=step.effective_yield,
                required_amount=step.required_amount,
                available=ledger.available,
            )
            if ledger.available <= 0 and step.currency == self.config.base_currency:
                outcome: StepOutcome = Halt(ledger, FUNDS_EXHAUSTED)
            else:
                outcome = self.execute_step(step, ledger)
            ledger = outcome.ledger
            if isinstance(outcome, Halt):
                self.events.emit(ev.PLAN_HALTED, index=index, product_id=step.product_id, reason=outcome.reason)
                logger.info("Plan halted at step %d (%s): %s", index, step.product_id, outcome.reason)
                return PlanReport(ledger, outcome.reason)

        self.events.emit(ev.PLAN_EXHAUSTED, steps=len(steps), available=ledger.available)
        logger.info("Plan exhausted after %d step(s); %s %s left", len(steps), ledger.available, ledger.base_currency)
        return PlanReport(ledger, None)

    def execute_step(self, step: AllocationStep, ledger: Ledger) -> StepOutcome:
        if step.currency == self.config.base_currency:
            if step.bounded:
                return self._base_bounded(step, ledger)
            return self._base_unbounded(step, ledger)
        if step.bounded:
            return self._convert_bounded(step, ledger)
        return self._convert_unbounded(step, ledger)

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    def _base_bounded(self, step: AllocationStep, ledger: Ledger) -> StepOutcome:
        required = step.required_amount or ZERO
        if required <= 0:
            return Continue(ledger)
        if ledger.available < required:
            self._subscribe(step, ledger.available, ledger)
            return Halt(ledger, FUNDS_EXHAUSTED)
        self._subscribe(step, required, ledger)
        return Continue(ledger)

    def _base_unbounded(self, step: AllocationStep, ledger: Ledger) -> StepOutcome:
        self._subscribe(step, ledger.available, ledger)
        return Halt(ledger, UNBOUNDED_BASE)

    def _convert_bounded(self, step: AllocationStep, ledger: Ledger) -> StepOutcome:
        required = step.required_amount or ZERO
        if required <= 0:
            return Continue(ledger)
        if ledger.available <= 0:
            return self._spend_remainder(step, ledger, INSUFFICIENT_BALANCE)
        try:
            buy_exact(self.exchange, self.config, self.events, step.currency, required)
        except Exception as exc:
            if not is_insufficient_balance(exc):
                raise
            logger.info(
                "Buying %s %s failed for lack of %s; spending the remaining %s",
                required, step.currency, self.config.base_currency, ledger.available,
            )
            return self._spend_remainder(step, ledger, INSUFFICIENT_BALANCE)

        held = self._live(step.currency)
        self._subscribe(step, min(required, held), ledger)
        ledger.refresh(self._live(self.config.base_currency))
        return Continue(ledger)

    def _convert_unbounded(self, step: AllocationStep, ledger: Ledger) -> StepOutcome:
        return self._spend_remainder(step, ledger, UNBOUNDED_CONVERSION)

    def _spend_remainder(self, step: AllocationStep, ledger: Ledger, reason: str) -> StepOutcome:
        """Buy *step.currency* with all remaining base, subscribe whatever is held, halt."""
        buy_with_all_base(self.exchange, self.config, self.events, step.currency, ledger.available)
        self._subscribe(step, self._live(step.currency), ledger)
        ledger.refresh(self._live(self.config.base_currency))
        return Halt(ledger, reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _live(self, currency: str) -> Decimal:
        return max(ZERO, to_decimal(self.exchange.get_spot_balance(currency)))

    def _subscribe(self, step: AllocationStep, amount: Decimal, ledger: Ledger) -> Ledger:
        if amount < self.config.min_subscription or amount <= 0:
            logger.debug("Not subscribing %s %s to %s: below minimum", amount, step.currency, step.product_id)
            return ledger
        self.exchange.subscribe(step.product_id, amount, step.kind)
        ledger.record(
            Subscription(
                product_id=step.product_id,
                currency=step.currency,
                amount=amount,
                effective_yield=step.effective_yield,
                kind=step.kind,
                tier=step.tier,
            )
        )
        self.events.emit(
            ev.SUBSCRIBED,
            product_id=step.product_id,
            currency=step.currency,
            amount=amount,
            effective_yield=step.effective_yield,
            tier=step.tier,
        )
        logger.info("Subscribed %s %s to %s at %s", amount, step.currency, step.product_id, step.effective_yield)
        pause(self.config)
        return ledger
