"""Product catalog normalizer.

Turns raw savings-product listings into a flat, yield-ranked list of
``AllocationStep`` values.

Two listing families are understood, both in Binance Simple Earn shape:

- flexible rows: ``productId``, ``asset``, ``latestAnnualPercentageRate``,
  optional ``tierAnnualPercentageRate`` ({"0-200USDT": "0.03", ...}) and a
  top-level ``isSoldOut``;
- locked rows: ``projectId`` plus a nested ``detail`` object carrying
  ``asset``, ``apr`` and ``isSoldOut``.

A product with N tier bands expands into N+1 steps: the untiered base step
and one step per band. A band ``"<lower>-<upper><CURRENCY>"`` is bounded
(``required_amount = upper - lower``) only when the key parses, the currency
is tracked and ``upper >= lower``; otherwise the band still becomes a step,
unbounded, with the bonus-adjusted yield.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from .amounts import ZERO, to_decimal
from .contracts import ExchangeClient, ProductKind
from .exceptions import MalformedResponseError

logger = logging.getLogger(__name__)

TIER_KEY_RE = re.compile(r"^(\d+)-(\d+)([A-Z]+)$")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TierBand:
    key: str
    bonus: Decimal


@dataclass(frozen=True)
class Product:
    product_id: str
    currency: str
    base_yield: Decimal
    tiers: tuple[TierBand, ...] = ()
    sold_out: bool = False
    kind: ProductKind = "flexible"


@dataclass(frozen=True)
class BoundedTier:
    lower: Decimal
    upper: Decimal
    currency: str

    @property
    def width(self) -> Decimal:
        return self.upper - self.lower


@dataclass(frozen=True)
class UnparseableTier:
    key: str
    reason: str


TierParse = Union[BoundedTier, UnparseableTier]


@dataclass(frozen=True)
class AllocationStep:
    """One directly executable unit of the plan.

    ``required_amount`` is the band width for a bounded tier step and
    ``None`` for an unbounded step, which takes everything left.
    """
    product_id: str
    currency: str
    effective_yield: Decimal
    required_amount: Optional[Decimal] = None
    kind: ProductKind = "flexible"
    tier: Optional[str] = None

    @property
    def bounded(self) -> bool:
        return self.required_amount is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "currency": self.currency,
            "effective_yield": self.effective_yield,
            "required_amount": self.required_amount,
            "kind": self.kind,
            "tier": self.tier,
        }


# ---------------------------------------------------------------------------
# Tier parsing and expansion
# ---------------------------------------------------------------------------

def parse_tier_key(key: str, tracked: Iterable[str]) -> TierParse:
    m = TIER_KEY_RE.match(key)
    if not m:
        return UnparseableTier(key, "pattern")
    lower, upper, currency = Decimal(m.group(1)), Decimal(m.group(2)), m.group(3)
    if currency not in set(tracked):
        return UnparseableTier(key, "untracked_currency")
    if upper < lower:
        return UnparseableTier(key, "inverted_band")
    return BoundedTier(lower, upper, currency)


def expand_product(product: Product, tracked: Sequence[str]) -> List[AllocationStep]:
    """Base step first, then one step per tier band in schedule order."""
    steps = [
        AllocationStep(
            product_id=product.product_id,
            currency=product.currency,
            effective_yield=product.base_yield,
            kind=product.kind,
        )
    ]
    for band in product.tiers:
        parsed = parse_tier_key(band.key, tracked)
        required: Optional[Decimal] = None
        if isinstance(parsed, BoundedTier):
            required = parsed.width
        else:
            logger.warning(
                "Tier %r of %s not bounded (%s); treating as unbounded",
                band.key, product.product_id, parsed.reason,
            )
        steps.append(
            AllocationStep(
                product_id=product.product_id,
                currency=product.currency,
                effective_yield=product.base_yield + band.bonus,
                required_amount=required,
                kind=product.kind,
                tier=band.key,
            )
        )
    return steps


def rank_steps(steps: Iterable[AllocationStep]) -> List[AllocationStep]:
    """Highest yield first; equal yields keep their input order."""
    return sorted(steps, key=lambda s: s.effective_yield, reverse=True)


def normalize_products(products: Iterable[Product], tracked: Sequence[str]) -> List[AllocationStep]:
    steps: List[AllocationStep] = []
    for product in products:
        if product.sold_out:
            continue
        steps.extend(expand_product(product, tracked))
    return rank_steps(steps)


# ---------------------------------------------------------------------------
# Raw listing rows → Product
# ---------------------------------------------------------------------------

def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def is_sold_out(row: Dict[str, Any]) -> bool:
    """Flexible rows flag it at the top level, locked rows inside ``detail``."""
    detail = row.get("detail") or {}
    return _flag(row.get("isSoldOut")) or _flag(detail.get("isSoldOut"))


def _bonus(value: Any, key: str, product_id: str) -> Decimal:
    try:
        return to_decimal(value)
    except MalformedResponseError:
        logger.warning("Tier %r of %s has no usable bonus %r; using 0", key, product_id, value)
        return ZERO


def _tiers(raw: Any, product_id: str) -> tuple[TierBand, ...]:
    if not raw:
        return ()
    if not isinstance(raw, dict):
        raise MalformedResponseError(f"tier schedule of {product_id} is not a mapping", product_id=product_id)
    return tuple(TierBand(str(k), _bonus(v, str(k), product_id)) for k, v in raw.items())


def product_from_flexible(row: Dict[str, Any]) -> Product:
    try:
        product_id = str(row["productId"])
        currency = str(row["asset"])
    except KeyError as exc:
        raise MalformedResponseError(f"flexible listing row missing {exc}", row=row) from exc
    return Product(
        product_id=product_id,
        currency=currency,
        base_yield=to_decimal(row.get("latestAnnualPercentageRate")),
        tiers=_tiers(row.get("tierAnnualPercentageRate"), product_id),
        sold_out=is_sold_out(row),
        kind="flexible",
    )


def product_from_locked(row: Dict[str, Any]) -> Product:
    detail = row.get("detail") or {}
    try:
        product_id = str(row["projectId"])
        currency = str(detail.get("asset") or row["asset"])
    except KeyError as exc:
        raise MalformedResponseError(f"locked listing row missing {exc}", row=row) from exc
    rate = detail.get("apr", detail.get("apy", row.get("apr")))
    return Product(
        product_id=product_id,
        currency=currency,
        base_yield=to_decimal(rate),
        tiers=_tiers(detail.get("tierAnnualPercentageRate"), product_id),
        sold_out=is_sold_out(row),
        kind="locked",
    )


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

def fetch_products(
    exchange: ExchangeClient,
    currencies: Sequence[str],
    *,
    include_locked: bool = False,
    max_workers: int = 8,
) -> List[Product]:
    """Fetch listings for every currency concurrently, in a stable order.

    Order is currency order, flexible before locked, then listing order,
    regardless of which request finishes first.
    """
    jobs = [(c, "flexible") for c in currencies]
    if include_locked:
        jobs += [(c, "locked") for c in currencies]
    jobs.sort(key=lambda j: currencies.index(j[0]))

    def _fetch(job: tuple[str, str]) -> List[Product]:
        currency, family = job
        if family == "flexible":
            rows = exchange.list_flexible_products(currency) or []
            return [product_from_flexible(r) for r in rows]
        rows = exchange.list_locked_products(currency) or []
        return [product_from_locked(r) for r in rows]

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs) or 1))) as pool:
        results = list(pool.map(_fetch, jobs))

    products = [p for batch in results for p in batch]
    logger.info(
        "Fetched %d product(s) for %s (locked=%s)",
        len(products), ",".join(currencies), include_locked,
    )
    return products


def build_steps(
    exchange: ExchangeClient,
    currencies: Sequence[str],
    *,
    include_locked: bool = False,
    max_workers: int = 8,
) -> List[AllocationStep]:
    products = fetch_products(exchange, currencies, include_locked=include_locked, max_workers=max_workers)
    steps = normalize_products(products, currencies)
    sold_out = sum(1 for p in products if p.sold_out)
    logger.info("Normalized %d step(s) from %d product(s), %d sold out", len(steps), len(products), sold_out)
    return steps


def steps_to_frame(steps: Sequence[AllocationStep]) -> pd.DataFrame:
    """Ranked plan as a table (for CLI output and reports)."""
    rows = []
    for rank, s in enumerate(steps, start=1):
        rows.append({
            "rank": rank,
            "product_id": s.product_id,
            "currency": s.currency,
            "kind": s.kind,
            "tier": s.tier or "",
            "yield_pct": float(s.effective_yield * 100),
            "required": "unbounded" if s.required_amount is None else format(s.required_amount, "f"),
        })
    return pd.DataFrame(rows, columns=["rank", "product_id", "currency", "kind", "tier", "yield_pct", "required"])
