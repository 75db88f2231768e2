"""Settlement and conversion helpers.

Before planning everything is pulled back into the spot account and
converted to the base currency:

1. redeem every flexible earn position (fixed delay after each call),
2. move funding-account free balances into spot,
3. market-sell every non-base tracked currency into the base currency,
   only when the held amount exceeds ``min_notional``. The sell quantity is
   floored to a whole unit (lot size of the stablecoin pairs).

A failed conversion (dust, exchange rejection) is logged and skipped; the
other currencies still convert. During planning the just-in-time buys
convert base funds into the currency a step needs.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from . import events as ev
from .amounts import ZERO, floor_to_step, floor_to_unit, to_decimal
from .config import AllocatorConfig
from .contracts import EventSink, ExchangeClient
from .exceptions import ExchangeError

logger = logging.getLogger(__name__)

QUOTE_STEP = Decimal("0.00000001")


def pause(config: AllocatorConfig) -> None:
    """Fixed inter-call delay required by the exchange after earn calls."""
    if config.call_delay_seconds > 0:
        time.sleep(config.call_delay_seconds)


@dataclass
class ConsolidationReport:
    redeemed: Dict[str, Decimal] = field(default_factory=dict)
    transferred: Dict[str, Decimal] = field(default_factory=dict)
    converted: Dict[str, Decimal] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Redemption and transfer
# ---------------------------------------------------------------------------

def redeem_earn_positions(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
) -> Dict[str, Decimal]:
    currencies = config.tracked_currencies
    with ThreadPoolExecutor(max_workers=max(1, min(config.max_workers, len(currencies)))) as pool:
        listings = list(pool.map(lambda c: exchange.list_earn_positions(c) or [], currencies))

    redeemed: Dict[str, Decimal] = {}
    for currency, positions in zip(currencies, listings):
        for position in positions:
            amount = to_decimal(position.get("totalAmount"))
            if amount <= 0:
                continue
            product_id = str(position["productId"])
            exchange.redeem(product_id)
            redeemed[currency] = redeemed.get(currency, ZERO) + amount
            events.emit(ev.REDEEMED, product_id=product_id, currency=currency, amount=amount)
            logger.info("Redeemed %s %s from %s", amount, currency, product_id)
            pause(config)
    return redeemed


def transfer_funding_to_spot(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
) -> Dict[str, Decimal]:
    currencies = config.tracked_currencies
    with ThreadPoolExecutor(max_workers=max(1, min(config.max_workers, len(currencies)))) as pool:
        amounts = list(pool.map(lambda c: to_decimal(exchange.get_funding_balance(c)), currencies))

    moved: Dict[str, Decimal] = {}
    for currency, amount in zip(currencies, amounts):
        if amount <= 0:
            continue
        exchange.transfer_funding_to_spot(currency, amount)
        moved[currency] = amount
        events.emit(ev.TRANSFERRED, currency=currency, amount=amount, source="funding", target="spot")
        logger.info("Moved %s %s from funding to spot", amount, currency)
    return moved


# ---------------------------------------------------------------------------
# Conversion into the base currency
# ---------------------------------------------------------------------------

def _convert_one(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
    currency: str,
) -> Tuple[Decimal, Optional[str]]:
    balance = to_decimal(exchange.get_spot_balance(currency))
    if balance <= config.min_notional:
        events.emit(ev.CONVERSION_SKIPPED, currency=currency, amount=balance, min_notional=config.min_notional)
        logger.debug("Skip converting %s %s: not above min notional %s", balance, currency, config.min_notional)
        return ZERO, None

    quantity = floor_to_unit(balance)
    symbol = config.pair_symbol(currency)
    events.emit(ev.CONVERSION_ATTEMPTED, currency=currency, symbol=symbol, side="SELL", quantity=quantity)
    try:
        exchange.market_sell(symbol, quantity)
    except ExchangeError as exc:
        logger.warning("Conversion of %s %s to %s failed: %s", quantity, currency, config.base_currency, exc)
        events.emit(ev.CONVERSION_FAILED, currency=currency, symbol=symbol, quantity=quantity, error=str(exc))
        return ZERO, str(exc)
    logger.info("Sold %s %s into %s", quantity, currency, config.base_currency)
    return quantity, None


def convert_to_base(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
) -> Tuple[Dict[str, Decimal], Dict[str, str]]:
    """Sell every non-base currency into the base; returns (sold, failures)."""
    currencies = config.non_base_currencies
    if not currencies:
        return {}, {}
    with ThreadPoolExecutor(max_workers=max(1, min(config.max_workers, len(currencies)))) as pool:
        results = list(pool.map(lambda c: _convert_one(exchange, config, events, c), currencies))

    sold: Dict[str, Decimal] = {}
    failed: Dict[str, str] = {}
    for currency, (quantity, error) in zip(currencies, results):
        if error is not None:
            failed[currency] = error
        elif quantity > 0:
            sold[currency] = quantity
    return sold, failed


def consolidate(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
) -> ConsolidationReport:
    report = ConsolidationReport()
    report.redeemed = redeem_earn_positions(exchange, config, events)
    report.transferred = transfer_funding_to_spot(exchange, config, events)
    report.converted, report.failed = convert_to_base(exchange, config, events)
    return report


# ---------------------------------------------------------------------------
# Just-in-time buys used by the planner
# ---------------------------------------------------------------------------

def buy_exact(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
    currency: str,
    quantity: Decimal,
) -> Dict[str, Any]:
    symbol = config.pair_symbol(currency)
    events.emit(ev.JIT_BUY, currency=currency, symbol=symbol, quantity=quantity, mode="quantity")
    return exchange.market_buy(symbol, quantity=quantity)


def buy_with_all_base(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
    currency: str,
    base_available: Decimal,
) -> Optional[Dict[str, Any]]:
    """Spend *base_available* on *currency* (quoteOrderQty); None if below min notional."""
    spend = floor_to_step(base_available, QUOTE_STEP)
    if spend < config.min_notional:
        logger.info(
            "Not buying %s: %s %s left is below min notional %s",
            currency, spend, config.base_currency, config.min_notional,
        )
        return None
    symbol = config.pair_symbol(currency)
    events.emit(ev.JIT_BUY, currency=currency, symbol=symbol, quote_quantity=spend, mode="quote")
    return exchange.market_buy(symbol, quote_quantity=spend)
