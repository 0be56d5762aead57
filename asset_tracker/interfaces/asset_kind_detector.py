"""Asset kind detector protocol: fungible vs non-fungible classification."""
from typing import Protocol


class AssetKindDetector(Protocol):
    """Abstract interface for classifying a token contract."""

    async def is_non_fungible(self, address: str, chain_id: str) -> bool: ...
