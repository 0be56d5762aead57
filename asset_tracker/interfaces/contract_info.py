"""Contract info source protocol: on-chain name and symbol of a collectible contract."""
from typing import Protocol

from ..models import CollectibleContract


class ContractInfoSource(Protocol):
    """Abstract interface for describing a token contract."""

    async def fetch_contract_info(self, address: str, chain_id: str) -> CollectibleContract: ...
