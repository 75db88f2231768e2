"""
Binance exchange plugin (python-binance).

Covers the endpoints the allocator needs:

- funding wallet (``/sapi/v1/asset/get-funding-asset``) and spot account
  balances,
- Simple Earn flexible/locked product lists, flexible positions,
  subscribe and redeem,
- universal transfer FUNDING → MAIN (spot),
- spot MARKET orders by ``quantity`` or ``quoteOrderQty``.

Amounts go out as plain decimal strings (no scientific notation).
``BinanceAPIException`` is wrapped into ``ExchangeError`` (or
``InsufficientBalanceError`` when Binance says the balance is short) so the
engine never depends on python-binance types.

```python
from yieldbox.plugins.exchange import BinanceEarnExchange

exchange = BinanceEarnExchange()           # BINANCE_API_KEY / BINANCE_API_SECRET
exchange.get_spot_balance("USDT")          # "123.45000000"
exchange.list_flexible_products("USDT")    # [{"productId": "USDT001", ...}]
```
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from binance.client import Client
from binance.exceptions import BinanceAPIException

from yieldbox.amounts import ZERO, format_amount, to_decimal
from yieldbox.contracts import PluginMeta, ProductKind
from yieldbox.exceptions import (
    INSUFFICIENT_BALANCE_MARKER,
    ExchangeError,
    InsufficientBalanceError,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
FUNDING_TO_SPOT = "FUNDING_MAIN"


@dataclass
class BinanceEarnExchange:
    """Binance Simple Earn + spot adapter implementing ``ExchangeClient``."""

    api_key_env: str = "BINANCE_API_KEY"
    api_secret_env: str = "BINANCE_API_SECRET"
    api_key: Optional[str] = field(default=None, repr=False)
    api_secret: Optional[str] = field(default=None, repr=False)
    testnet: bool = False
    recv_window: int = 60000

    _client: Any = field(default=None, repr=False)

    meta = PluginMeta(
        name="binance.earn.v1",
        kind="exchange",
        version="0.1.0",
        core_compat=">=0.1,<0.2",
        description="Binance Simple Earn, funding wallet and spot market orders (python-binance)",
        tags=("binance", "earn", "crypto"),
        capabilities=("live",),
        params_schema={
            "type": "object",
            "properties": {
                "api_key_env": {"type": "string", "default": "BINANCE_API_KEY"},
                "api_secret_env": {"type": "string", "default": "BINANCE_API_SECRET"},
                "testnet": {"type": "boolean", "default": False},
                "recv_window": {"type": "integer", "default": 60000},
            },
        },
        examples=(
            "plugins:\n  exchange:\n    name: binance.earn.v1\n    params_init:\n      api_key_env: BINANCE_API_KEY\n      api_secret_env: BINANCE_API_SECRET",
        ),
    )

    def __post_init__(self):
        if self._client is not None:
            return
        api_key = self.api_key or os.environ.get(self.api_key_env)
        api_secret = self.api_secret or os.environ.get(self.api_secret_env)
        if not api_key or not api_secret:
            raise EnvironmentError(f"Missing credentials: {self.api_key_env} / {self.api_secret_env}")
        self._client = Client(api_key, api_secret, testnet=self.testnet)
        logger.info("Connected to Binance (testnet=%s)", self.testnet)

    # ------------------------------------------------------------------
    # Call wrapper
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[..., Any], **params: Any) -> Any:
        try:
            return fn(recvWindow=self.recv_window, **params)
        except BinanceAPIException as e:
            message = str(getattr(e, "message", "") or e)
            err_cls = InsufficientBalanceError if INSUFFICIENT_BALANCE_MARKER in message.lower() else ExchangeError
            raise err_cls(self.meta.name, message, code=getattr(e, "code", None), endpoint=getattr(fn, "__name__", repr(fn))) from e

    def _paged(self, fn: Callable[..., Any], **params: Any) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        current = 1
        while True:
            resp = self._call(fn, current=current, size=PAGE_SIZE, **params) or {}
            page = resp.get("rows") or []
            rows.extend(page)
            total = int(resp.get("total") or 0)
            if not page or len(rows) >= total:
                return rows
            current += 1

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_funding_balance(self, asset: str) -> Optional[str]:
        for row in self._call(self._client.funding_wallet, asset=asset) or []:
            if row.get("asset") == asset:
                return row.get("free")
        return None

    def get_spot_balance(self, asset: str) -> Optional[str]:
        bal = self._call(self._client.get_asset_balance, asset=asset)
        return bal.get("free") if bal else None

    def get_earn_balance(self, asset: str) -> Decimal:
        """Flexible plus locked Simple Earn positions held in *asset*."""
        total = ZERO
        for row in self.list_earn_positions(asset):
            total += to_decimal(row.get("totalAmount"))
        for row in self._paged(self._client.get_simple_earn_locked_product_position, asset=asset):
            total += to_decimal(row.get("amount"))
        return total

    def list_earn_positions(self, asset: str) -> List[Dict[str, Any]]:
        return self._paged(self._client.get_simple_earn_flexible_product_position, asset=asset)

    # ------------------------------------------------------------------
    # Product listings
    # ------------------------------------------------------------------

    def list_flexible_products(self, asset: str) -> List[Dict[str, Any]]:
        return self._paged(self._client.get_simple_earn_flexible_product_list, asset=asset)

    def list_locked_products(self, asset: str) -> List[Dict[str, Any]]:
        return self._paged(self._client.get_simple_earn_locked_product_list, asset=asset)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def market_buy(
        self,
        symbol: str,
        quantity: Optional[Decimal] = None,
        quote_quantity: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        if (quantity is None) == (quote_quantity is None):
            raise ValueError("market_buy needs exactly one of quantity / quote_quantity")
        if quantity is not None:
            res = self._call(self._client.order_market_buy, symbol=symbol, quantity=format_amount(quantity))
        else:
            res = self._call(self._client.order_market_buy, symbol=symbol, quoteOrderQty=format_amount(quote_quantity))
        logger.info("MARKET BUY %s -> %s (%s)", symbol, res.get("executedQty"), res.get("status"))
        return res

    def market_sell(self, symbol: str, quantity: Decimal) -> Dict[str, Any]:
        res = self._call(self._client.order_market_sell, symbol=symbol, quantity=format_amount(quantity))
        logger.info("MARKET SELL %s %s (%s)", symbol, res.get("executedQty"), res.get("status"))
        return res

    # ------------------------------------------------------------------
    # Simple Earn
    # ------------------------------------------------------------------

    def subscribe(self, product_id: str, amount: Decimal, kind: ProductKind = "flexible") -> Dict[str, Any]:
        if kind == "locked":
            return self._call(
                self._client.subscribe_simple_earn_locked_product,
                projectId=product_id,
                amount=format_amount(amount),
            )
        return self._call(
            self._client.subscribe_simple_earn_flexible_product,
            productId=product_id,
            amount=format_amount(amount),
        )

    def redeem(self, product_id: str, amount: Optional[Decimal] = None) -> Dict[str, Any]:
        if amount is None:
            return self._call(self._client.redeem_simple_earn_flexible_product, productId=product_id, redeemAll=True)
        return self._call(
            self._client.redeem_simple_earn_flexible_product,
            productId=product_id,
            amount=format_amount(amount),
        )

    def transfer_funding_to_spot(self, asset: str, amount: Decimal) -> Dict[str, Any]:
        return self._call(
            self._client.make_universal_transfer,
            type=FUNDING_TO_SPOT,
            asset=asset,
            amount=format_amount(amount),
        )
