"""Token exchange-rate cache with a TTL-gated chain-slug lookup."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence

from ..interfaces.price_source import PriceSource
from ..models import UNRESOLVED, Asset, ChainSlugCache, Unresolved
from ..store import ObservableStore

logger = logging.getLogger(__name__)

Rate = float | Unresolved

# Config keys whose change makes the current rate map stale.
_REFRESH_TRIGGERS = frozenset({"tokens", "native_currency", "chain_id"})


@dataclass(frozen=True)
class ExchangeRatesConfig:
    disabled: bool = True
    interval: float = 3 * 60
    threshold: float = 6 * 60 * 60
    native_currency: str = "eth"
    chain_id: str = ""
    tokens: tuple[Asset, ...] = ()
    batch_size: int = 100


@dataclass(frozen=True)
class ExchangeRatesState:
    contract_exchange_rates: dict[str, Rate] = field(default_factory=dict)
    supported_chains: ChainSlugCache = field(default_factory=ChainSlugCache)


def _chunked(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class ExchangeRateCache(ObservableStore[ExchangeRatesConfig, ExchangeRatesState]):
    """Polls token → native-currency prices for the tracked asset list.

    Prices are keyed by checksummed token address. A token whose price could
    not be determined maps to ``UNRESOLVED`` rather than to ``0`` or to a
    missing key, so callers can tell "not priced" from "not tracked".
    """

    name = "ExchangeRateCache"

    def __init__(
        self,
        price_source: PriceSource,
        config: Mapping[str, Any] | None = None,
        state: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(ExchangeRatesConfig(), ExchangeRatesState())
        self._price_source = price_source
        self._clock = clock
        self._timer: asyncio.TimerHandle | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._pending_refreshes: set[asyncio.Task[None]] = set()
        self._refresh_generation = 0

        self.initialize()
        self.configure({"disabled": False}, full_update=False)
        if config:
            self.configure(config, full_update=False)
        if state:
            self.update(state)

    # ------------------------------------------------------------------
    # Chain slug resolution
    # ------------------------------------------------------------------

    async def resolve_chain_slug(self, chain_id: str | None = None) -> str | None:
        """Return the pricing provider's slug for ``chain_id``.

        Uses the cached platform list while it is younger than the configured
        threshold; otherwise refreshes it first. A failed refresh falls back
        to the stale snapshot. Never raises.
        """
        if chain_id is None:
            chain_id = self.config.chain_id
        cached = self.state.supported_chains

        if self._clock() - cached.timestamp <= self.config.threshold:
            return cached.find_slug(chain_id)

        try:
            platforms = await self._price_source.fetch_asset_platforms()
        except Exception as e:
            logger.warning("Could not refresh supported chains, using cached list: %s", e)
            return cached.find_slug(chain_id)

        fresh = ChainSlugCache(timestamp=self._clock(), platforms=tuple(platforms))
        self.update({"supported_chains": fresh})
        return fresh.find_slug(chain_id)

    # ------------------------------------------------------------------
    # Rates
    # ------------------------------------------------------------------

    async def refresh_rates(self) -> None:
        """Rebuild the rate map for every tracked token.

        A refresh that finishes after a newer one has started discards its
        result, so the map always reflects the latest token list, chain and
        currency.
        """
        self._refresh_generation += 1
        generation = self._refresh_generation
        tokens = self.config.tokens
        if not tokens or self.config.disabled:
            return

        currency = self.config.native_currency.lower()
        slug = await self.resolve_chain_slug()

        rates: dict[str, Rate] = {}
        if slug is None:
            logger.info(
                "No price platform for chain %s; %d token(s) unresolved",
                self.config.chain_id,
                len(tokens),
            )
            for token in tokens:
                rates[token.address] = UNRESOLVED
        else:
            addresses = list(dict.fromkeys(token.address for token in tokens))
            prices: dict[str, float] = {}
            for batch in _chunked(addresses, self.config.batch_size):
                prices.update(
                    await self._price_source.fetch_token_prices(slug, batch, currency)
                )
            for token in tokens:
                price = prices.get(token.address.lower())
                rates[token.address] = UNRESOLVED if price is None else price

        if generation != self._refresh_generation:
            logger.debug("Discarding superseded exchange rate refresh")
            return
        self.update({"contract_exchange_rates": rates})
        logger.debug("Updated %d exchange rate(s) in %s", len(rates), currency)

    def get_rate(self, address: str) -> Rate | None:
        """Rate for a tracked token, or ``None`` if the token is not tracked."""
        lowered = address.lower()
        for tracked, rate in self.state.contract_exchange_rates.items():
            if tracked.lower() == lowered:
                return rate
        return None

    async def _safely_refresh(self) -> None:
        try:
            await self.refresh_rates()
        except Exception as e:
            logger.error("Error refreshing exchange rates: %s", e)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self, interval: float | None = None) -> None:
        """Refresh now and schedule the next tick.

        Args:
            interval: New polling interval in seconds; it takes effect for the
                tick scheduled by this call.
        """
        if interval:
            self.configure({"interval": interval}, full_update=False)
        self._cancel_timer()

        if not self.config.disabled:
            await self._safely_refresh()

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.config.interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._poll_task = asyncio.ensure_future(self.poll())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop(self) -> None:
        """Stop polling and drop any scheduled tick."""
        self._cancel_timer()
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    @property
    def is_polling(self) -> bool:
        return self._timer is not None

    # ------------------------------------------------------------------
    # Reconfiguration
    # ------------------------------------------------------------------

    def _on_configure(self, changed: Mapping[str, Any]) -> None:
        if self.config.disabled or not _REFRESH_TRIGGERS.intersection(changed):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; rates refresh deferred to next poll")
            return
        task = loop.create_task(self._safely_refresh())
        self._pending_refreshes.add(task)
        task.add_done_callback(self._pending_refreshes.discard)

    async def wait_for_pending_refreshes(self) -> None:
        """Wait for refreshes triggered by configuration changes."""
        while self._pending_refreshes:
            await asyncio.gather(*list(self._pending_refreshes))
