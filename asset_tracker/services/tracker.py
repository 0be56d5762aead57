"""Tracker orchestration: wires account/network feeds, registry, rates and suggestions."""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Mapping

from ..chains.evm import ContractInfoReader, ContractKindDetector, EvmClient
from ..config import AppConfig, SeedAssetConfig
from ..interfaces import AssetKindDetector, ContractInfoSource, PriceSource
from ..models import Asset, Unresolved
from ..oracles import CoinGeckoClient
from .asset_registry import AssetRegistry, AssetRegistryState
from .collectibles import CollectibleRegistry
from .exchange_rates import ExchangeRateCache, Rate
from .suggested_assets import AllowlistPolicy, SuggestedAssetWorkflow

logger = logging.getLogger(__name__)


class AssetTracker:
    """Keeps the asset registry and exchange-rate cache in step."""

    def __init__(
        self,
        config: AppConfig,
        price_source: PriceSource | None = None,
        detector: AssetKindDetector | None = None,
        contract_info: ContractInfoSource | None = None,
    ) -> None:
        self._config = config
        tracker_cfg = config.tracker
        selected_account = tracker_cfg.selected_account or config.accounts[0].address

        clients = {
            chain_id: EvmClient(chain_cfg)
            for chain_id, chain_cfg in config.chains.items()
        }
        if detector is None:
            detector = ContractKindDetector(clients, config.known_contracts)
        if contract_info is None:
            contract_info = ContractInfoReader(clients)
        if price_source is None:
            price_source = CoinGeckoClient(config.coingecko)

        selection = {"selected_account": selected_account, "chain_id": tracker_cfg.chain_id}
        self.registry = AssetRegistry(detector, config=selection)
        self.collectibles = CollectibleRegistry(
            contract_info, config=selection, lock=self.registry.lock
        )
        self.rates = ExchangeRateCache(
            price_source,
            config={
                "disabled": config.rates.disabled,
                "interval": config.rates.interval_seconds,
                "threshold": config.rates.threshold_seconds,
                "batch_size": config.rates.batch_size,
                "native_currency": tracker_cfg.native_currency,
                "chain_id": tracker_cfg.chain_id,
            },
        )
        self.suggestions = SuggestedAssetWorkflow(self.registry)
        self.auto_accept = AllowlistPolicy(self.suggestions, config.suggestions.auto_accept)
        self.suggestions.add_pending_listener(self.auto_accept)

        self._seeding = False
        self.registry.subscribe(self._on_registry_change)

    # ------------------------------------------------------------------
    # Upstream feeds
    # ------------------------------------------------------------------

    def _on_registry_change(self, state: AssetRegistryState) -> None:
        if self._seeding:
            return
        self.rates.configure({"tokens": state.assets})

    def select_account(self, account: str) -> None:
        """Account-changed event."""
        self.registry.select_account(account)
        self.collectibles.select_account(account)

    def switch_network(self, chain_id: str) -> None:
        """Network-changed event."""
        chain_id = str(chain_id)
        self.registry.select_chain(chain_id)
        self.collectibles.select_chain(chain_id)
        self.rates.configure({"chain_id": chain_id})

    def set_native_currency(self, currency: str) -> None:
        self.rates.configure({"native_currency": currency})

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    async def load_configured_assets(self) -> None:
        """Add every asset listed in the configuration to its account/chain bucket."""
        original_account = self.registry.config.selected_account
        original_chain = self.registry.config.chain_id

        self._seeding = True
        try:
            for account in self._config.accounts:
                by_chain: dict[str, list[SeedAssetConfig]] = defaultdict(list)
                for seed in account.assets:
                    by_chain[seed.chain_id].append(seed)

                for chain_id, seeds in by_chain.items():
                    self.registry.select_account(account.address)
                    self.registry.select_chain(chain_id)
                    await self.registry.add_assets_batch(
                        Asset(
                            address=s.address,
                            chain_id=chain_id,
                            symbol=s.symbol,
                            decimals=s.decimals,
                            image=s.image,
                        )
                        for s in seeds
                    )
                    logger.info(
                        "Loaded %d asset(s) for %s on chain %s",
                        len(seeds),
                        account.label or account.address,
                        chain_id,
                    )
        finally:
            self.registry.select_account(original_account)
            self.registry.select_chain(original_chain)
            self._seeding = False

        self.rates.configure({"tokens": self.registry.state.assets}, full_update=False)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def watch_asset(
        self, asset: Mapping[str, Any], asset_type: str = "ERC20"
    ) -> tuple[asyncio.Future[str], str]:
        return await self.suggestions.propose(asset, asset_type)

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    @staticmethod
    def _format_rate(rate: Rate | None) -> str:
        if rate is None or isinstance(rate, Unresolved):
            return "unresolved"
        return f"{rate:.8g}"

    async def check_rates(self) -> dict[str, Rate]:
        """Refresh rates once and log them for the selected account and chain."""
        await self.rates.refresh_rates()
        rates = dict(self.rates.state.contract_exchange_rates)
        currency = self.rates.config.native_currency.upper()

        if not self.registry.state.assets:
            logger.info(
                "No assets tracked for %s on chain %s",
                self.registry.config.selected_account,
                self.registry.config.chain_id,
            )
        for asset in self.registry.state.assets:
            logger.info(
                "%-10s %s  %s %s",
                asset.symbol or "?",
                asset.address,
                self._format_rate(rates.get(asset.address)),
                currency,
            )
        return rates

    async def run_continuous(self, interval_seconds: float | None = None) -> None:
        """Seed configured assets and poll exchange rates until cancelled."""
        await self.load_configured_assets()
        logger.info(
            "Starting exchange rate polling (every %s seconds)",
            interval_seconds or self.rates.config.interval,
        )
        try:
            await self.rates.poll(interval_seconds)
            await asyncio.Event().wait()
        finally:
            await self.close()

    async def close(self) -> None:
        self.rates.stop()
        await self.rates.wait_for_pending_refreshes()
        await self.auto_accept.wait_idle()
