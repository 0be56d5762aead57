"""Per-(account, chain) asset ledger."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from ..interfaces.asset_kind_detector import AssetKindDetector
from ..models import Asset
from ..store import ObservableStore
from ..utils import normalize_address

logger = logging.getLogger(__name__)

BucketKey = tuple[str, str]


def bucket_key(account: str, chain_id: str) -> BucketKey:
    """Composite ledger key; accounts compare case-insensitively."""
    return (account.lower(), str(chain_id))


@dataclass(frozen=True)
class AssetRegistryConfig:
    selected_account: str = ""
    chain_id: str = ""


@dataclass(frozen=True)
class AssetRegistryState:
    ledger: dict[BucketKey, tuple[Asset, ...]] = field(default_factory=dict)
    assets: tuple[Asset, ...] = ()
    ignored_assets: tuple[Asset, ...] = ()


def _upsert(assets: list[Asset], entry: Asset) -> None:
    """Replace the entry with the same address in place, or append it."""
    for index, existing in enumerate(assets):
        if existing.same_address(entry):
            assets[index] = entry
            return
    assets.append(entry)


class AssetRegistry(ObservableStore[AssetRegistryConfig, AssetRegistryState]):
    """Stores tracked assets for each account and chain.

    ``state.assets`` is the projection of the ledger for the selected account
    and chain. Mutations that suspend on contract-kind detection are
    serialized by a lock so concurrent adds never overwrite each other.
    """

    name = "AssetRegistry"

    def __init__(
        self,
        detector: AssetKindDetector | None = None,
        config: Mapping[str, Any] | None = None,
        state: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(AssetRegistryConfig(), AssetRegistryState())
        self._detector = detector
        self._lock = asyncio.Lock()

        self.initialize()
        if config:
            self.configure(config, full_update=False)
        if state:
            self.update(state)
        self._project()

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------

    @property
    def lock(self) -> asyncio.Lock:
        """Mutation lock; stores that must not interleave with this one share it."""
        return self._lock

    @property
    def _current_key(self) -> BucketKey:
        return bucket_key(self.config.selected_account, self.config.chain_id)

    def assets_for(self, account: str, chain_id: str) -> tuple[Asset, ...]:
        return self.state.ledger.get(bucket_key(account, chain_id), ())

    def _write_bucket(
        self, key: BucketKey, assets: Iterable[Asset], **extra: Any
    ) -> tuple[Asset, ...]:
        """Replace one bucket and refresh the projection if it is selected."""
        new_assets = tuple(assets)
        ledger = dict(self.state.ledger)
        ledger[key] = new_assets
        patch: dict[str, Any] = {"ledger": ledger, **extra}
        if key == self._current_key:
            patch["assets"] = new_assets
        self.update(patch)
        return new_assets

    def _project(self) -> None:
        self.update({"assets": self.state.ledger.get(self._current_key, ())})

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_account(self, account: str) -> None:
        """Switch the selected account and re-project the active list."""
        self.configure({"selected_account": account})
        self._project()

    def select_chain(self, chain_id: str) -> None:
        """Switch the selected chain and re-project the active list."""
        self.configure({"chain_id": str(chain_id)})
        self._project()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _detect_is_non_fungible(self, address: str, chain_id: str) -> bool | None:
        if self._detector is None:
            return None
        try:
            return await self._detector.is_non_fungible(address, chain_id)
        except Exception as e:
            logger.debug("Could not classify %s on chain %s: %s", address, chain_id, e)
            return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_asset(
        self,
        address: str,
        symbol: str | None = None,
        decimals: int | None = None,
        image: str | None = None,
    ) -> tuple[Asset, ...]:
        """Add an asset to the active list, replacing one with the same address.

        Returns:
            The asset list of the bucket the asset was added to.
        """
        async with self._lock:
            key = self._current_key
            chain_id = self.config.chain_id
            address = normalize_address(address)
            is_non_fungible = await self._detect_is_non_fungible(address, chain_id)
            entry = Asset(
                address=address,
                chain_id=chain_id,
                symbol=symbol,
                decimals=decimals,
                image=image,
                is_non_fungible=is_non_fungible,
            )

            assets = list(self.state.ledger.get(key, ()))
            _upsert(assets, entry)
            logger.info("Added asset %s (%s)", address, symbol or "?")
            return self._write_bucket(key, assets)

    async def add_assets_batch(self, assets_to_add: Iterable[Asset]) -> tuple[Asset, ...]:
        """Add or update several assets as one unit."""
        async with self._lock:
            key = self._current_key
            chain_id = self.config.chain_id
            normalized = [
                replace(a, address=normalize_address(a.address), chain_id=chain_id)
                for a in assets_to_add
            ]
            kinds = await asyncio.gather(
                *(self._detect_is_non_fungible(a.address, chain_id) for a in normalized)
            )

            assets = list(self.state.ledger.get(key, ()))
            for asset, is_non_fungible in zip(normalized, kinds):
                _upsert(assets, replace(asset, is_non_fungible=is_non_fungible))
            logger.info("Added %d asset(s) in batch", len(normalized))
            return self._write_bucket(key, assets)

    async def update_asset_type(self, address: str) -> Asset | None:
        """Re-detect the contract kind of an active asset.

        Returns:
            The updated asset, or ``None`` if it is not in the active list.
        """
        async with self._lock:
            key = self._current_key
            is_non_fungible = await self._detect_is_non_fungible(
                address, self.config.chain_id
            )
            assets = list(self.state.ledger.get(key, ()))
            for index, existing in enumerate(assets):
                if existing.same_address(address):
                    updated = replace(existing, is_non_fungible=is_non_fungible)
                    assets[index] = updated
                    self._write_bucket(key, assets)
                    return updated
            return None

    def remove_asset(self, address: str) -> None:
        """Remove an asset from the active list."""
        self._write_bucket(
            self._current_key,
            (a for a in self.state.assets if not a.same_address(address)),
        )

    def remove_and_ignore_asset(self, address: str) -> None:
        """Remove an asset from the active list and remember it as ignored."""
        address = normalize_address(address)
        ignored = list(self.state.ignored_assets)
        kept: list[Asset] = []
        for asset in self.state.assets:
            if asset.same_address(address):
                if not any(i.same_address(address) for i in ignored):
                    ignored.append(asset)
                continue
            kept.append(asset)

        if not any(i.same_address(address) for i in ignored):
            ignored.append(Asset(address=address, chain_id=self.config.chain_id))

        self._write_bucket(self._current_key, kept, ignored_assets=tuple(ignored))
        logger.info("Ignoring asset %s", address)

    def clear_ignored(self) -> None:
        """Forget every ignored asset."""
        self.update({"ignored_assets": ()})
