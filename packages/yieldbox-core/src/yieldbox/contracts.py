"""Plugin protocol contracts for yieldbox.

Defines the interfaces that exchanges, publishers and event sinks must
implement. Plugins are ``@dataclass`` classes with a class-level
``meta = PluginMeta(...)`` attribute.

## Quick Reference

**ExchangeClient**: the remote venue (balances, listings, orders, earn):
    get_funding_balance(asset) / get_spot_balance(asset) / get_earn_balance(asset) → amount | None
    list_earn_positions(asset) → [{"productId", "totalAmount", ...}]
    list_flexible_products(asset) / list_locked_products(asset) → [listing rows]
    market_buy(symbol, quantity=..., quote_quantity=...) / market_sell(symbol, quantity) → order dict
    subscribe(product_id, amount, kind) / redeem(product_id, amount=None) → dict
    transfer_funding_to_spot(asset, amount) → dict

**PublisherPlugin**: sends notifications:
    publish(result, params) → None

**EventSink**: receives structured domain events from the engine:
    emit(event, **payload) → None
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Protocol, Union

PluginKind = Literal["exchange", "publisher"]
ProductKind = Literal["flexible", "locked"]

# What an exchange may hand back for a balance: Decimal, a decimal string,
# a float straight off the JSON decoder, or nothing at all.
AmountLike = Union[Decimal, str, int, float, None]


@dataclass(frozen=True)
class PluginMeta:
    """Metadata describing a plugin for discovery and documentation.

    Attributes:
        name: Unique plugin identifier (e.g. "binance.earn.v1").
        kind: Plugin type; determines which protocol it implements.
        version: Semver version of this plugin.
        core_compat: Semver range of compatible yieldbox versions.
        description: Human-readable description of what this plugin does.
        tags: Searchable tags.
        capabilities: Supported modes/features (e.g. ("paper", "live")).
        params_schema: JSON Schema for plugin parameters.
        examples: Minimal YAML config snippets showing usage.
    """
    name: str
    kind: PluginKind
    version: str
    core_compat: str
    description: str = ""
    tags: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    params_schema: Optional[Dict[str, Any]] = None
    examples: tuple[str, ...] = ()


@dataclass
class RunResult:
    """Outcome of one allocation run.

    Attributes:
        run_id: Unique identifier for this run.
        exchange: Name of the exchange plugin used.
        include_locked: Whether locked products took part.
        balances: Consolidated pool per tracked currency before settlement.
        plan: Ranked allocation steps, as dicts.
        subscriptions: Subscriptions executed by the planner, as dicts.
        swept: Subscriptions executed by the sweep, as dicts.
        halt_reason: Why the planner stopped early, or None if it ran out of steps.
        steps_evaluated: Number of ranked steps the planner looked at.
        success: False when the run aborted.
        error: The aborting error message.
    """
    run_id: str
    exchange: str
    include_locked: bool
    balances: Dict[str, Decimal] = field(default_factory=dict)
    plan: List[Dict[str, Any]] = field(default_factory=list)
    subscriptions: List[Dict[str, Any]] = field(default_factory=list)
    swept: List[Dict[str, Any]] = field(default_factory=list)
    halt_reason: Optional[str] = None
    steps_evaluated: int = 0
    success: bool = True
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serialisable response body (Decimals rendered as strings)."""
        return _jsonable({
            "success": self.success,
            "run_id": self.run_id,
            "exchange": self.exchange,
            "include_locked": self.include_locked,
            "balances": self.balances,
            "plan": self.plan,
            "subscriptions": self.subscriptions,
            "swept": self.swept,
            "halt_reason": self.halt_reason,
            "steps_evaluated": self.steps_evaluated,
            "error": self.error,
        })


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return format(obj, "f")
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    return obj


class ExchangeClient(Protocol):
    """Remote exchange collaborator.

    Balance getters return whatever the venue reports; ``None`` means the
    venue had nothing for that asset. Listing methods return raw rows in the
    venue's shape (Binance Simple Earn field names). Mutating calls raise
    ``ExchangeError`` (``InsufficientBalanceError`` when funds are short).
    """
    meta: PluginMeta

    def get_funding_balance(self, asset: str) -> AmountLike: ...
    def get_spot_balance(self, asset: str) -> AmountLike: ...
    def get_earn_balance(self, asset: str) -> AmountLike: ...
    def list_earn_positions(self, asset: str) -> List[Dict[str, Any]]: ...
    def list_flexible_products(self, asset: str) -> List[Dict[str, Any]]: ...
    def list_locked_products(self, asset: str) -> List[Dict[str, Any]]: ...
    def market_buy(
        self,
        symbol: str,
        quantity: Optional[Decimal] = None,
        quote_quantity: Optional[Decimal] = None,
    ) -> Dict[str, Any]: ...
    def market_sell(self, symbol: str, quantity: Decimal) -> Dict[str, Any]: ...
    def subscribe(self, product_id: str, amount: Decimal, kind: ProductKind = "flexible") -> Dict[str, Any]: ...
    def redeem(self, product_id: str, amount: Optional[Decimal] = None) -> Dict[str, Any]: ...
    def transfer_funding_to_spot(self, asset: str, amount: Decimal) -> Dict[str, Any]: ...


class PublisherPlugin(Protocol):
    """Sends run results to external destinations (Telegram, ...)."""
    meta: PluginMeta

    def publish(self, result: RunResult, params: Dict[str, Any]) -> None: ...


class EventSink(Protocol):
    """Receives structured domain events (step evaluated, halt, ...)."""

    def emit(self, event: str, **payload: Any) -> None: ...
