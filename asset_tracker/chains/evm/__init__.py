"""EVM chain client."""
from .client import ContractInfoReader, ContractKindDetector, EvmClient

__all__ = ["ContractInfoReader", "ContractKindDetector", "EvmClient"]
