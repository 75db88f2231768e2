"""Balance aggregator.

Queries the funding, spot and earn sub-accounts for every tracked currency
and reduces them into one spendable pool per currency. The queries are
independent reads and fan out on a thread pool; the reduction is pure.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Sequence, Tuple

import pandas as pd

from .amounts import ZERO, sum_amounts, to_decimal
from .contracts import AmountLike, ExchangeClient

logger = logging.getLogger(__name__)

ACCOUNTS = ("funding", "spot", "earn")


@dataclass(frozen=True)
class BalanceSnapshot:
    """Per-account balances for the tracked currencies at one point in time."""

    funding: Dict[str, Decimal] = field(default_factory=dict)
    spot: Dict[str, Decimal] = field(default_factory=dict)
    earn: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def pool(self) -> Dict[str, Decimal]:
        return sum_amounts(self.funding, self.spot, self.earn)

    def total(self) -> Decimal:
        return sum(self.pool.values(), ZERO)


def _getters(exchange: ExchangeClient) -> Dict[str, Callable[[str], AmountLike]]:
    return {
        "funding": exchange.get_funding_balance,
        "spot": exchange.get_spot_balance,
        "earn": exchange.get_earn_balance,
    }


def fetch_snapshot(
    exchange: ExchangeClient,
    currencies: Sequence[str],
    *,
    max_workers: int = 8,
) -> BalanceSnapshot:
    getters = _getters(exchange)
    jobs: List[Tuple[str, str]] = [(account, c) for account in ACCOUNTS for c in currencies]

    def _read(job: Tuple[str, str]) -> Decimal:
        account, currency = job
        return to_decimal(getters[account](currency))

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs) or 1))) as pool:
        amounts = list(pool.map(_read, jobs))

    books: Dict[str, Dict[str, Decimal]] = {a: {c: ZERO for c in currencies} for a in ACCOUNTS}
    for (account, currency), amount in zip(jobs, amounts):
        books[account][currency] = amount
    return BalanceSnapshot(**books)


def aggregate_balances(
    exchange: ExchangeClient,
    currencies: Sequence[str],
    *,
    max_workers: int = 8,
) -> Dict[str, Decimal]:
    """Consolidated pool: funding free + earn total + spot free, per currency."""
    snapshot = fetch_snapshot(exchange, currencies, max_workers=max_workers)
    pool = snapshot.pool
    logger.info("Aggregated balances: %s", {c: format(a, "f") for c, a in pool.items()})
    return pool


def read_spot_balances(
    exchange: ExchangeClient,
    currencies: Sequence[str],
    *,
    max_workers: int = 8,
) -> Dict[str, Decimal]:
    """Live spot balances only (what the planner and sweep can spend)."""
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(currencies) or 1))) as pool:
        amounts = list(pool.map(lambda c: to_decimal(exchange.get_spot_balance(c)), currencies))
    return dict(zip(currencies, amounts))


def balances_to_frame(snapshot: BalanceSnapshot) -> pd.DataFrame:
    pool = snapshot.pool
    rows = []
    for currency in pool:
        rows.append({
            "currency": currency,
            "funding": float(snapshot.funding.get(currency, ZERO)),
            "spot": float(snapshot.spot.get(currency, ZERO)),
            "earn": float(snapshot.earn.get(currency, ZERO)),
            "total": float(pool[currency]),
        })
    return pd.DataFrame(rows, columns=["currency", "funding", "spot", "earn", "total"])
