"""Per-(account, chain) collectible ledger."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from ..errors import AssetValidationError
from ..interfaces.contract_info import ContractInfoSource
from ..models import Collectible, CollectibleContract
from ..store import ObservableStore
from ..utils import normalize_address
from .asset_registry import BucketKey, bucket_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectiblesConfig:
    selected_account: str = ""
    chain_id: str = ""


@dataclass(frozen=True)
class CollectiblesState:
    collectibles_ledger: dict[BucketKey, tuple[Collectible, ...]] = field(default_factory=dict)
    contracts_ledger: dict[BucketKey, tuple[CollectibleContract, ...]] = field(
        default_factory=dict
    )
    collectibles: tuple[Collectible, ...] = ()
    collectible_contracts: tuple[CollectibleContract, ...] = ()
    ignored_collectibles: tuple[Collectible, ...] = ()


def _token_id(value: Any) -> int:
    if isinstance(value, bool):
        raise AssetValidationError(f'Invalid token id "{value}".')
    try:
        token_id = int(value)
    except (TypeError, ValueError, OverflowError):
        raise AssetValidationError(f'Invalid token id "{value}".') from None
    if token_id < 0:
        raise AssetValidationError(f'Invalid token id "{value}".')
    return token_id


class CollectibleRegistry(ObservableStore[CollectiblesConfig, CollectiblesState]):
    """Stores individual non-fungible tokens for each account and chain.

    Collectibles are identified by ``(address, token_id)``. Each bucket also
    keeps the contracts its collectibles belong to: a contract is described
    once, when its first token is added, and dropped with its last token.
    Pass the asset registry's lock as ``lock`` so token and collectible
    mutations never interleave.
    """

    name = "CollectibleRegistry"

    def __init__(
        self,
        contract_info: ContractInfoSource | None = None,
        config: Mapping[str, Any] | None = None,
        state: Mapping[str, Any] | None = None,
        lock: asyncio.Lock | None = None,
    ) -> None:
        super().__init__(CollectiblesConfig(), CollectiblesState())
        self._contract_info = contract_info
        self._lock = lock or asyncio.Lock()

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
    def _current_key(self) -> BucketKey:
        return bucket_key(self.config.selected_account, self.config.chain_id)

    def collectibles_for(self, account: str, chain_id: str) -> tuple[Collectible, ...]:
        return self.state.collectibles_ledger.get(bucket_key(account, chain_id), ())

    def contracts_for(self, account: str, chain_id: str) -> tuple[CollectibleContract, ...]:
        return self.state.contracts_ledger.get(bucket_key(account, chain_id), ())

    def _write_bucket(
        self,
        key: BucketKey,
        collectibles: Iterable[Collectible],
        contracts: Iterable[CollectibleContract],
        **extra: Any,
    ) -> tuple[Collectible, ...]:
        new_collectibles = tuple(collectibles)
        new_contracts = tuple(contracts)
        collectibles_ledger = dict(self.state.collectibles_ledger)
        contracts_ledger = dict(self.state.contracts_ledger)
        collectibles_ledger[key] = new_collectibles
        contracts_ledger[key] = new_contracts

        patch: dict[str, Any] = {
            "collectibles_ledger": collectibles_ledger,
            "contracts_ledger": contracts_ledger,
            **extra,
        }
        if key == self._current_key:
            patch["collectibles"] = new_collectibles
            patch["collectible_contracts"] = new_contracts
        self.update(patch)
        return new_collectibles

    def _project(self) -> None:
        key = self._current_key
        self.update(
            {
                "collectibles": self.state.collectibles_ledger.get(key, ()),
                "collectible_contracts": self.state.contracts_ledger.get(key, ()),
            }
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_account(self, account: str) -> None:
        self.configure({"selected_account": account})
        self._project()

    def select_chain(self, chain_id: str) -> None:
        self.configure({"chain_id": str(chain_id)})
        self._project()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _describe_contract(self, address: str, chain_id: str) -> CollectibleContract:
        if self._contract_info is not None:
            try:
                info = await self._contract_info.fetch_contract_info(address, chain_id)
                return CollectibleContract(
                    address=address, chain_id=chain_id, name=info.name, symbol=info.symbol
                )
            except Exception as e:
                logger.debug(
                    "Could not describe contract %s on chain %s: %s", address, chain_id, e
                )
        return CollectibleContract(address=address, chain_id=chain_id)

    async def add_collectible(
        self,
        address: str,
        token_id: int,
        name: str | None = None,
        description: str | None = None,
        image: str | None = None,
    ) -> tuple[Collectible, ...]:
        """Add a collectible, replacing the entry with the same address and token id.

        The first collectible of a contract also records the contract, with
        its on-chain name and symbol when they can be read.

        Returns:
            The collectible list of the bucket the collectible was added to.
        """
        async with self._lock:
            key = self._current_key
            chain_id = self.config.chain_id
            address = normalize_address(address)
            token_id = _token_id(token_id)

            described = None
            if not any(
                c.address.lower() == address.lower()
                for c in self.state.contracts_ledger.get(key, ())
            ):
                described = await self._describe_contract(address, chain_id)

            contracts = list(self.state.contracts_ledger.get(key, ()))
            if described is not None and not any(
                c.address.lower() == address.lower() for c in contracts
            ):
                contracts.append(described)

            entry = Collectible(
                address=address,
                token_id=token_id,
                chain_id=chain_id,
                name=name,
                description=description,
                image=image,
            )
            collectibles = list(self.state.collectibles_ledger.get(key, ()))
            for index, existing in enumerate(collectibles):
                if existing.same_token(address, token_id):
                    collectibles[index] = entry
                    break
            else:
                collectibles.append(entry)

            logger.info("Added collectible %s #%d", address, token_id)
            return self._write_bucket(key, collectibles, contracts)

    def _without(
        self, address: str, token_id: int
    ) -> tuple[list[Collectible], list[Collectible], list[CollectibleContract]]:
        """Split the active bucket into kept and removed tokens; prune orphaned contracts."""
        token_id = _token_id(token_id)
        kept: list[Collectible] = []
        removed: list[Collectible] = []
        for collectible in self.state.collectibles:
            if collectible.same_token(address, token_id):
                removed.append(collectible)
            else:
                kept.append(collectible)

        contracts = list(self.state.collectible_contracts)
        if not any(c.address.lower() == address.lower() for c in kept):
            contracts = [c for c in contracts if c.address.lower() != address.lower()]
        return kept, removed, contracts

    def remove_collectible(self, address: str, token_id: int) -> None:
        """Remove a collectible from the active list."""
        kept, _, contracts = self._without(address, token_id)
        self._write_bucket(self._current_key, kept, contracts)

    def remove_and_ignore_collectible(self, address: str, token_id: int) -> None:
        """Remove a collectible from the active list and remember it as ignored."""
        kept, removed, contracts = self._without(address, token_id)
        ignored = list(self.state.ignored_collectibles)
        for collectible in removed:
            if not any(i.same_token(collectible.address, collectible.token_id) for i in ignored):
                ignored.append(collectible)
        self._write_bucket(
            self._current_key, kept, contracts, ignored_collectibles=tuple(ignored)
        )
        logger.info("Ignoring collectible %s #%s", address, token_id)

    def clear_ignored_collectibles(self) -> None:
        """Forget every ignored collectible."""
        self.update({"ignored_collectibles": ()})
