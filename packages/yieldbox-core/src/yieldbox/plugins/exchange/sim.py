from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from yieldbox.amounts import ZERO, to_decimal
from yieldbox.contracts import PluginMeta, ProductKind
from yieldbox.exceptions import ExchangeError, InsufficientBalanceError

logger = logging.getLogger(__name__)

INSUFFICIENT_MESSAGE = "Account has insufficient balance for requested action."


def _book(values: Optional[Dict[str, Any]]) -> Dict[str, Decimal]:
    return {str(k): to_decimal(v) for k, v in (values or {}).items()}


@dataclass
class SimEarnExchange:
    """In-memory paper exchange with funding, spot and earn books.

    Listing rows use Binance Simple Earn field names so the normalizer sees
    exactly what the live plugin would return. Pair prices default to 1
    (stablecoin pairs); every call is appended to ``calls``.
    """

    meta = PluginMeta(
        name="sim.earn.v1",
        kind="exchange",
        version="0.1.0",
        core_compat=">=0.1,<0.2",
        description="Paper exchange simulator for dry runs of the allocator",
        tags=("paper",),
        capabilities=("paper",),
        params_schema={
            "type": "object",
            "properties": {
                "quote_currency": {"type": "string", "default": "USDT"},
                "funding": {"type": "object"},
                "spot": {"type": "object"},
                "flexible_products": {"type": "array"},
                "locked_products": {"type": "array"},
            },
        },
    )

    quote_currency: str = "USDT"
    default_product_suffix: str = "001"
    funding: Dict[str, Decimal] = field(default_factory=dict)
    spot: Dict[str, Decimal] = field(default_factory=dict)
    positions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    flexible_products: List[Dict[str, Any]] = field(default_factory=list)
    locked_products: List[Dict[str, Any]] = field(default_factory=list)
    prices: Dict[str, Decimal] = field(default_factory=dict)
    reject_symbols: Dict[str, str] = field(default_factory=dict)
    calls: List[tuple] = field(default_factory=list, repr=False)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.funding = _book(self.funding)
        self.spot = _book(self.spot)
        self.prices = _book(self.prices)
        self.positions = {
            pid: {"asset": str(p["asset"]), "amount": to_decimal(p["amount"]), "kind": p.get("kind", "flexible")}
            for pid, p in (self.positions or {}).items()
        }

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_funding_balance(self, asset: str) -> Optional[Decimal]:
        return self.funding.get(asset)

    def get_spot_balance(self, asset: str) -> Optional[Decimal]:
        return self.spot.get(asset)

    def get_earn_balance(self, asset: str) -> Decimal:
        return sum((p["amount"] for p in self.positions.values() if p["asset"] == asset), ZERO)

    def list_earn_positions(self, asset: str) -> List[Dict[str, Any]]:
        return [
            {"productId": pid, "asset": p["asset"], "totalAmount": str(p["amount"])}
            for pid, p in self.positions.items()
            if p["asset"] == asset and p["kind"] == "flexible"
        ]

    def list_flexible_products(self, asset: str) -> List[Dict[str, Any]]:
        return [r for r in self.flexible_products if r.get("asset") == asset]

    def list_locked_products(self, asset: str) -> List[Dict[str, Any]]:
        return [r for r in self.locked_products if (r.get("detail") or {}).get("asset") == asset]

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def _split(self, symbol: str) -> str:
        if not symbol.endswith(self.quote_currency):
            raise ExchangeError(self.meta.name, f"Invalid symbol {symbol}", code=-1121)
        return symbol[: -len(self.quote_currency)]

    def _debit(self, asset: str, amount: Decimal) -> None:
        with self._lock:
            if self.spot.get(asset, ZERO) < amount:
                raise InsufficientBalanceError(self.meta.name, INSUFFICIENT_MESSAGE, code=-2010)
            self.spot[asset] = self.spot.get(asset, ZERO) - amount

    def _credit(self, asset: str, amount: Decimal) -> None:
        with self._lock:
            self.spot[asset] = self.spot.get(asset, ZERO) + amount

    def market_buy(
        self,
        symbol: str,
        quantity: Optional[Decimal] = None,
        quote_quantity: Optional[Decimal] = None,
    ) -> Dict[str, Any]:
        self.calls.append(("market_buy", symbol, quantity, quote_quantity))
        asset = self._split(symbol)
        if symbol in self.reject_symbols:
            raise ExchangeError(self.meta.name, self.reject_symbols[symbol], code=-1013)
        price = self.prices.get(symbol, Decimal("1"))
        if quantity is not None:
            cost = quantity * price
        elif quote_quantity is not None:
            cost = quote_quantity
            quantity = quote_quantity / price
        else:
            raise ValueError("market_buy needs quantity or quote_quantity")
        self._debit(self.quote_currency, cost)
        self._credit(asset, quantity)
        return {"symbol": symbol, "side": "BUY", "status": "FILLED", "executedQty": str(quantity),
                "cummulativeQuoteQty": str(cost)}

    def market_sell(self, symbol: str, quantity: Decimal) -> Dict[str, Any]:
        self.calls.append(("market_sell", symbol, quantity))
        asset = self._split(symbol)
        if symbol in self.reject_symbols:
            raise ExchangeError(self.meta.name, self.reject_symbols[symbol], code=-1013)
        price = self.prices.get(symbol, Decimal("1"))
        self._debit(asset, quantity)
        self._credit(self.quote_currency, quantity * price)
        return {"symbol": symbol, "side": "SELL", "status": "FILLED", "executedQty": str(quantity),
                "cummulativeQuoteQty": str(quantity * price)}

    # ------------------------------------------------------------------
    # Earn
    # ------------------------------------------------------------------

    def _product_asset(self, product_id: str, kind: ProductKind) -> str:
        if kind == "locked":
            for r in self.locked_products:
                if r.get("projectId") == product_id:
                    return str(r["detail"]["asset"])
        else:
            for r in self.flexible_products:
                if r.get("productId") == product_id:
                    return str(r["asset"])
            if product_id.endswith(self.default_product_suffix):
                return product_id[: -len(self.default_product_suffix)]
        raise ExchangeError(self.meta.name, f"Product {product_id} does not exist", code=-6001)

    def subscribe(self, product_id: str, amount: Decimal, kind: ProductKind = "flexible") -> Dict[str, Any]:
        self.calls.append(("subscribe", product_id, amount, kind))
        asset = self._product_asset(product_id, kind)
        self._debit(asset, amount)
        pos = self.positions.setdefault(product_id, {"asset": asset, "amount": ZERO, "kind": kind})
        pos["amount"] += amount
        return {"purchaseId": len(self.calls), "success": True}

    def redeem(self, product_id: str, amount: Optional[Decimal] = None) -> Dict[str, Any]:
        self.calls.append(("redeem", product_id, amount))
        pos = self.positions.get(product_id)
        if pos is None:
            raise ExchangeError(self.meta.name, f"No position in {product_id}", code=-6003)
        out = pos["amount"] if amount is None else min(amount, pos["amount"])
        pos["amount"] -= out
        if pos["amount"] == 0:
            del self.positions[product_id]
        self._credit(pos["asset"], out)
        return {"redeemId": len(self.calls), "success": True}

    def transfer_funding_to_spot(self, asset: str, amount: Decimal) -> Dict[str, Any]:
        self.calls.append(("transfer", asset, amount))
        if self.funding.get(asset, ZERO) < amount:
            raise InsufficientBalanceError(self.meta.name, INSUFFICIENT_MESSAGE, code=-5002)
        self.funding[asset] -= amount
        self._credit(asset, amount)
        return {"tranId": len(self.calls)}

    def calls_of(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]
