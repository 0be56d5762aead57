"""Track on-chain assets per account and chain, with exchange rates and watch requests."""

__version__ = "0.1.0"
