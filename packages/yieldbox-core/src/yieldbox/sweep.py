"""Final sweep: park every residual balance in the default flexible product.

Runs after the planner whether or not it halted. The target product id is
derived, not discovered: ``<CURRENCY><default_product_suffix>`` (e.g.
``USDT001``).
"""
from __future__ import annotations

import logging
from typing import List

from . import events as ev
from .balances import read_spot_balances
from .config import AllocatorConfig
from .contracts import EventSink, ExchangeClient
from .planner import Subscription
from .settlement import pause

logger = logging.getLogger(__name__)


def sweep(
    exchange: ExchangeClient,
    config: AllocatorConfig,
    events: EventSink,
) -> List[Subscription]:
    balances = read_spot_balances(exchange, config.tracked_currencies, max_workers=config.max_workers)
    swept: List[Subscription] = []
    for currency, amount in balances.items():
        if amount <= 0 or amount < config.min_subscription:
            continue
        product_id = config.default_product_id(currency)
        exchange.subscribe(product_id, amount, "flexible")
        sub = Subscription(product_id=product_id, currency=currency, amount=amount)
        swept.append(sub)
        events.emit(ev.SWEEP_SUBSCRIBED, product_id=product_id, currency=currency, amount=amount)
        logger.info("Swept %s %s into %s", amount, currency, product_id)
        pause(config)
    return swept
