"""Custom exceptions for yieldbox.

Hierarchy::

    YieldboxError
    ├── ConfigValidationError   — YAML config failed validation
    ├── PluginNotFoundError     — plugin name not in registry
    ├── PluginLoadError         — entry point or import failed
    ├── MalformedResponseError  — exchange payload could not be interpreted
    └── ExchangeError           — exchange rejected or failed a call
        └── InsufficientBalanceError — the account cannot cover the request

All exceptions carry structured context in ``details``.

Example::

    try:
        result = run_allocation(exchange, config)
    except InsufficientBalanceError as e:
        print(e.code)              # e.g. -2010
    except ExchangeError as e:
        print(e.exchange_name)     # str
        print(e.details)           # dict with context
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .validate import ValidationFinding

INSUFFICIENT_BALANCE_MARKER = "insufficient balance"


class YieldboxError(Exception):
    """Base exception for all yieldbox errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class ConfigValidationError(YieldboxError):
    """Configuration validation failed.

    Attributes:
        findings: List of ValidationFinding objects describing each issue.
    """

    def __init__(self, message: str, findings: list[ValidationFinding]) -> None:
        super().__init__(message, details={"findings_count": len(findings)})
        self.findings = findings


class PluginNotFoundError(YieldboxError):
    """Plugin name not found in the registry.

    Attributes:
        plugin_name: The name that was looked up.
        group: Plugin group searched (e.g. "exchange", "publisher").
        available: Names that do exist in that group.
    """

    def __init__(
        self,
        plugin_name: str,
        group: str,
        available: list[str],
    ) -> None:
        msg = (
            f"plugin_not_found: '{plugin_name}' in group '{group}'. "
            f"Available: {', '.join(sorted(available))}"
        )
        super().__init__(msg, details={"plugin_name": plugin_name, "group": group})
        self.plugin_name = plugin_name
        self.group = group
        self.available = available


class PluginLoadError(YieldboxError):
    """Entry-point or import for a plugin failed."""

    def __init__(self, plugin_name: str, cause: Exception) -> None:
        msg = f"plugin_load_failed: '{plugin_name}': {cause}"
        super().__init__(msg, details={"plugin_name": plugin_name, "cause": str(cause)})
        self.plugin_name = plugin_name
        self.cause = cause


class MalformedResponseError(YieldboxError):
    """An exchange payload (amount, listing row) could not be interpreted."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(f"malformed_response: {message}", details=dict(kwargs))


class ExchangeError(YieldboxError):
    """Exchange call failed (order rejected, subscription refused, ...).

    Attributes:
        exchange_name: Name of the exchange plugin.
        code: Exchange error code when the venue reports one.
        reason: The exchange's own message.
    """

    def __init__(self, exchange_name: str, message: str, *, code: int | None = None, **kwargs: Any) -> None:
        msg = f"exchange_call_failed ({exchange_name}): {message}"
        super().__init__(msg, details={"exchange_name": exchange_name, "code": code, **kwargs})
        self.exchange_name = exchange_name
        self.code = code
        self.reason = message


class InsufficientBalanceError(ExchangeError):
    """The account does not hold enough funds for the requested action."""


def is_insufficient_balance(exc: BaseException) -> bool:
    """True when *exc* reports an insufficient-balance rejection.

    Adapters that know the venue's error codes raise
    ``InsufficientBalanceError`` directly; anything else is recognised by the
    marker text in its message.
    """
    if isinstance(exc, InsufficientBalanceError):
        return True
    return INSUFFICIENT_BALANCE_MARKER in str(exc).lower()
