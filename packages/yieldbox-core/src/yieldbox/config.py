"""Allocator configuration.

The knobs are fixed constants with defaults below; a YAML file may override
them at startup (``allocator:`` block) and name the exchange and publisher
plugins (``plugins:`` block)::

    allocator:
      tracked_currencies: [USDT, USDC, FDUSD]
      base_currency: USDT
      min_subscription: "0.1"
      min_notional: "5"
      call_delay_seconds: 3
    plugins:
      exchange:
        name: binance.earn.v1
        params_init:
          api_key_env: BINANCE_API_KEY
          api_secret_env: BINANCE_API_SECRET
      publishers:
        - name: telegram.publisher.v1
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigValidationError
from .validate import validate_config

DEFAULT_TRACKED_CURRENCIES = ("USDT", "USDC", "FDUSD")
DEFAULT_BASE_CURRENCY = "USDT"
DEFAULT_MIN_SUBSCRIPTION = Decimal("0.1")
DEFAULT_MIN_NOTIONAL = Decimal("5")
DEFAULT_CALL_DELAY_SECONDS = 3.0  # Simple Earn endpoints are rate limited per account
DEFAULT_PRODUCT_SUFFIX = "001"
DEFAULT_MAX_WORKERS = 8
DEFAULT_EXCHANGE = "binance.earn.v1"


@dataclass(frozen=True)
class AllocatorConfig:
    tracked_currencies: tuple[str, ...] = DEFAULT_TRACKED_CURRENCIES
    base_currency: str = DEFAULT_BASE_CURRENCY
    min_subscription: Decimal = DEFAULT_MIN_SUBSCRIPTION
    min_notional: Decimal = DEFAULT_MIN_NOTIONAL
    call_delay_seconds: float = DEFAULT_CALL_DELAY_SECONDS
    default_product_suffix: str = DEFAULT_PRODUCT_SUFFIX
    include_locked: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    def __post_init__(self) -> None:
        if self.base_currency not in self.tracked_currencies:
            raise ValueError(f"base currency {self.base_currency} is not tracked: {self.tracked_currencies}")

    @property
    def non_base_currencies(self) -> tuple[str, ...]:
        return tuple(c for c in self.tracked_currencies if c != self.base_currency)

    def pair_symbol(self, currency: str) -> str:
        """Spot symbol trading *currency* against the base (e.g. USDCUSDT)."""
        return f"{currency}{self.base_currency}"

    def default_product_id(self, currency: str) -> str:
        return f"{currency}{self.default_product_suffix}"

    def with_overrides(self, **overrides: Any) -> "AllocatorConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "AllocatorConfig":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {k: v for k, v in data.items() if k in known}
        if "tracked_currencies" in kwargs:
            kwargs["tracked_currencies"] = tuple(str(c).upper() for c in kwargs["tracked_currencies"])
        if "base_currency" in kwargs:
            kwargs["base_currency"] = str(kwargs["base_currency"]).upper()
        for key in ("min_subscription", "min_notional"):
            if key in kwargs:
                kwargs[key] = Decimal(str(kwargs[key]))
        if "call_delay_seconds" in kwargs:
            kwargs["call_delay_seconds"] = float(kwargs["call_delay_seconds"])
        if "max_workers" in kwargs:
            kwargs["max_workers"] = int(kwargs["max_workers"])
        if "default_product_suffix" in kwargs:
            kwargs["default_product_suffix"] = str(kwargs["default_product_suffix"])
        return cls(**kwargs)


def load_config(path: str | Path | None = None) -> Dict[str, Any]:
    """Read and validate a YAML config; a missing path yields the defaults."""
    cfg: Dict[str, Any] = {}
    if path is not None:
        with Path(path).open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    findings = validate_config(cfg)
    if any(f.level == "error" for f in findings):
        msgs = "; ".join(f.message for f in findings if f.level == "error")
        raise ConfigValidationError(f"config_validation_failed: {msgs}", findings=findings)
    return cfg


def allocator_config(cfg: Dict[str, Any]) -> AllocatorConfig:
    return AllocatorConfig.from_mapping(cfg.get("allocator"))
