"""Decimal helpers for exchange amounts.

Every amount that enters the engine goes through ``to_decimal`` so that
thresholds and sums never see binary floating point.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from .contracts import AmountLike
from .exceptions import MalformedResponseError

ZERO = Decimal("0")


def to_decimal(value: AmountLike) -> Decimal:
    """Convert an exchange amount to ``Decimal``; missing/empty means zero.

    Floats are routed through ``str()`` so ``0.1`` stays ``Decimal("0.1")``.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise MalformedResponseError(f"boolean is not an amount: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    text = str(value).strip()
    if not text:
        return ZERO
    try:
        out = Decimal(text)
    except InvalidOperation as exc:
        raise MalformedResponseError(f"not a decimal amount: {value!r}") from exc
    if not out.is_finite():
        raise MalformedResponseError(f"not a finite amount: {value!r}")
    return out


def floor_to_unit(amount: Decimal) -> Decimal:
    """Round *amount* down to a whole unit (stablecoin pair lot size)."""
    return amount.quantize(Decimal("1"), rounding=ROUND_DOWN)


def floor_to_step(amount: Decimal, step: Decimal) -> Decimal:
    """Round *amount* down to the nearest multiple of *step* (Binance LOT_SIZE)."""
    if step <= 0:
        return amount
    return (amount / step).to_integral_value(rounding=ROUND_DOWN) * step


def format_amount(amount: Decimal) -> str:
    r"""
    Format an amount for the exchange API (no scientific notation).
    Binance requires: ^([0-9]{1,20})(\.[0-9]{1,20})?$
    """
    if amount == 0:
        return "0"
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def sum_amounts(*maps: dict[str, Decimal]) -> dict[str, Decimal]:
    """Key-wise sum of several currency → amount maps."""
    out: dict[str, Decimal] = {}
    for m in maps:
        for currency, amount in m.items():
            out[currency] = out.get(currency, ZERO) + amount
    return out
