"""Data models: all frozen (immutable)."""
from __future__ import annotations

import enum
from dataclasses import dataclass


class Unresolved(enum.Enum):
    """Sentinel for a price that could not be looked up."""

    UNRESOLVED = "unresolved"

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED = Unresolved.UNRESOLVED


class SuggestedAssetStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestedAssetStatus.PENDING


@dataclass(frozen=True)
class Asset:
    """A fungible or non-fungible token contract tracked for one chain.

    ``address`` is stored checksummed; identity is case-insensitive on it.
    ``is_non_fungible`` is ``None`` while the contract kind is unknown.
    """

    address: str
    chain_id: str = ""
    symbol: str | None = None
    decimals: int | None = None
    image: str | None = None
    is_non_fungible: bool | None = None

    @property
    def is_fungibility_known(self) -> bool:
        return self.is_non_fungible is not None

    def same_address(self, other: Asset | str) -> bool:
        address = other.address if isinstance(other, Asset) else other
        return self.address.lower() == address.lower()


@dataclass(frozen=True)
class Collectible:
    """One non-fungible token, identified by contract address and token id."""

    address: str
    token_id: int
    chain_id: str = ""
    name: str | None = None
    description: str | None = None
    image: str | None = None

    def same_token(self, address: str, token_id: int) -> bool:
        return self.token_id == token_id and self.address.lower() == address.lower()


@dataclass(frozen=True)
class CollectibleContract:
    """A contract that at least one tracked collectible belongs to."""

    address: str
    chain_id: str = ""
    name: str | None = None
    symbol: str | None = None


@dataclass(frozen=True)
class SuggestedAssetRequest:
    """An externally proposed asset awaiting the user's decision."""

    id: str
    created_at: float
    asset_type: str
    asset: Asset
    status: SuggestedAssetStatus = SuggestedAssetStatus.PENDING
    error: Exception | None = None


@dataclass(frozen=True)
class ChainPlatform:
    """One entry of the pricing provider's asset-platform list."""

    id: str
    chain_identifier: int | None = None
    name: str = ""


@dataclass(frozen=True)
class ChainSlugCache:
    """Snapshot of supported platforms and when it was last fetched."""

    timestamp: float = 0.0
    platforms: tuple[ChainPlatform, ...] | None = None

    def find_slug(self, chain_id: str) -> str | None:
        if not self.platforms:
            return None
        for platform in self.platforms:
            if platform.chain_identifier is None:
                continue
            if str(platform.chain_identifier) == str(chain_id):
                return platform.id or None
        return None
