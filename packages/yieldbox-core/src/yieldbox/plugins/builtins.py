"""Built-in plugin registry.

These plugins are shipped inside the core package. External plugins can still be
installed via entry points and will be merged by the PluginRegistry.
"""

from __future__ import annotations

from typing import Dict, Type

from .exchange import BinanceEarnExchange, SimEarnExchange
from .publisher import TelegramPublisher


def _map(*classes):
    return {c.meta.name: c for c in classes}


def builtins() -> Dict[str, Dict[str, Type]]:
    return {
        "exchange": _map(BinanceEarnExchange, SimEarnExchange),
        "publisher": _map(TelegramPublisher),
    }
