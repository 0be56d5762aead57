"""Price oracle clients."""
from .coingecko import CoinGeckoClient

__all__ = ["CoinGeckoClient"]
