from .binance import BinanceEarnExchange
from .sim import SimEarnExchange

__all__ = [
    "BinanceEarnExchange",
    "SimEarnExchange",
]
