"""yieldbox: park idle stablecoins in the best-paying exchange savings products."""

__version__ = "0.1.0"
