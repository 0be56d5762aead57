"""Price source protocol: token prices and supported chains."""
from typing import Protocol, Sequence

from ..models import ChainPlatform


class PriceSource(Protocol):
    """Abstract interface for the remote pricing provider."""

    async def fetch_asset_platforms(self) -> tuple[ChainPlatform, ...]: ...

    async def fetch_token_prices(
        self, chain_slug: str, addresses: Sequence[str], vs_currency: str
    ) -> dict[str, float]: ...
