"""Unit tests for the exchange-rate cache and its chain-slug lookup."""
from __future__ import annotations

import asyncio

import pytest

from asset_tracker.errors import FetchError
from asset_tracker.models import UNRESOLVED, Asset, ChainSlugCache
from asset_tracker.services.exchange_rates import ExchangeRateCache
from conftest import DAI, KITTIES, START_TIME, USDC, USDT, WETH, FakeClock, FakePriceSource

HOUR = 60 * 60


def _tokens(*addresses: str) -> tuple[Asset, ...]:
    return tuple(Asset(address=a, chain_id="1") for a in addresses)


@pytest.fixture()
def cache(price_source: FakePriceSource, clock: FakeClock) -> ExchangeRateCache:
    return ExchangeRateCache(
        price_source,
        config={"chain_id": "1", "tokens": _tokens(DAI, USDC)},
        clock=clock,
    )


class TestDefaults:
    def test_constructed_enabled(self, price_source: FakePriceSource) -> None:
        cache = ExchangeRateCache(price_source)

        assert cache.config.disabled is False
        assert cache.config.interval == 180
        assert cache.config.threshold == 6 * HOUR
        assert cache.config.native_currency == "eth"
        assert cache.state.contract_exchange_rates == {}
        assert cache.state.supported_chains == ChainSlugCache()

    def test_initial_state_is_applied(self, price_source: FakePriceSource) -> None:
        cache = ExchangeRateCache(
            price_source, state={"contract_exchange_rates": {DAI: 0.0005}}
        )
        assert cache.get_rate(DAI) == 0.0005


class TestResolveChainSlug:
    @pytest.mark.asyncio
    async def test_first_lookup_fetches(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        assert await cache.resolve_chain_slug() == "ethereum"
        assert price_source.platform_calls == 1
        assert cache.state.supported_chains.timestamp == START_TIME

    @pytest.mark.asyncio
    async def test_fresh_snapshot_is_reused(
        self, cache: ExchangeRateCache, price_source: FakePriceSource, clock: FakeClock
    ) -> None:
        await cache.resolve_chain_slug()
        clock.advance(5 * HOUR + 59 * 60)

        assert await cache.resolve_chain_slug("137") == "polygon-pos"
        assert price_source.platform_calls == 1

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_refreshed(
        self, cache: ExchangeRateCache, price_source: FakePriceSource, clock: FakeClock
    ) -> None:
        await cache.resolve_chain_slug()
        clock.advance(6 * HOUR + 60)

        assert await cache.resolve_chain_slug() == "ethereum"
        assert price_source.platform_calls == 2
        assert cache.state.supported_chains.timestamp == START_TIME + 6 * HOUR + 60

    @pytest.mark.asyncio
    async def test_failed_refresh_uses_stale_snapshot(
        self,
        cache: ExchangeRateCache,
        price_source: FakePriceSource,
        clock: FakeClock,
        fetch_error: FetchError,
    ) -> None:
        await cache.resolve_chain_slug()
        clock.advance(7 * HOUR)
        price_source.platforms_error = fetch_error

        assert await cache.resolve_chain_slug() == "ethereum"
        assert cache.state.supported_chains.timestamp == START_TIME

    @pytest.mark.asyncio
    async def test_failure_without_snapshot_gives_none(
        self,
        cache: ExchangeRateCache,
        price_source: FakePriceSource,
        fetch_error: FetchError,
    ) -> None:
        price_source.platforms_error = fetch_error

        assert await cache.resolve_chain_slug() is None

    @pytest.mark.asyncio
    async def test_unknown_chain_gives_none(self, cache: ExchangeRateCache) -> None:
        assert await cache.resolve_chain_slug("424242") is None


class TestRefreshRates:
    @pytest.mark.asyncio
    async def test_rates_keyed_by_token_address(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 0.0005, USDC.lower(): 0.00049}

        await cache.refresh_rates()

        assert cache.state.contract_exchange_rates == {DAI: 0.0005, USDC: 0.00049}
        assert price_source.price_calls == [("ethereum", [DAI, USDC], "eth")]

    @pytest.mark.asyncio
    async def test_missing_price_is_unresolved(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 0.0005}

        await cache.refresh_rates()

        assert cache.state.contract_exchange_rates == {DAI: 0.0005, USDC: UNRESOLVED}
        assert cache.get_rate(USDC) is UNRESOLVED

    @pytest.mark.asyncio
    async def test_unsupported_chain_marks_every_token_unresolved(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"chain_id": "424242"}, full_update=False)

        await cache.refresh_rates()

        assert cache.state.contract_exchange_rates == {DAI: UNRESOLVED, USDC: UNRESOLVED}
        assert price_source.price_calls == []

    @pytest.mark.asyncio
    async def test_no_tokens_makes_no_calls(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.update({"contract_exchange_rates": {WETH: 1.0}})
        cache.configure({"tokens": ()}, full_update=False)

        await cache.refresh_rates()

        assert price_source.platform_calls == 0
        assert price_source.price_calls == []
        assert cache.state.contract_exchange_rates == {WETH: 1.0}

    @pytest.mark.asyncio
    async def test_disabled_makes_no_calls(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"disabled": True})

        await cache.refresh_rates()

        assert price_source.platform_calls == 0
        assert cache.state.contract_exchange_rates == {}

    @pytest.mark.asyncio
    async def test_map_is_rebuilt_wholesale(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 0.0005, WETH.lower(): 1.0}
        await cache.refresh_rates()

        cache.configure({"tokens": _tokens(WETH)}, full_update=False)
        await cache.refresh_rates()

        assert cache.state.contract_exchange_rates == {WETH: 1.0}
        assert cache.get_rate(DAI) is None

    @pytest.mark.asyncio
    async def test_addresses_fetched_in_batches(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {a.lower(): 1.0 for a in (DAI, USDC, WETH, USDT, KITTIES)}
        cache.configure(
            {"tokens": _tokens(DAI, USDC, WETH, USDT, KITTIES, DAI), "batch_size": 2},
            full_update=False,
        )

        await cache.refresh_rates()

        assert [call[1] for call in price_source.price_calls] == [
            [DAI, USDC],
            [WETH, USDT],
            [KITTIES],
        ]
        assert set(cache.state.contract_exchange_rates) == {DAI, USDC, WETH, USDT, KITTIES}

    @pytest.mark.asyncio
    async def test_currency_is_lowercased(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"native_currency": "USD"}, full_update=False)

        await cache.refresh_rates()

        assert price_source.price_calls[0][2] == "usd"

    @pytest.mark.asyncio
    async def test_price_fetch_error_propagates_and_keeps_map(
        self,
        cache: ExchangeRateCache,
        price_source: FakePriceSource,
        fetch_error: FetchError,
    ) -> None:
        cache.update({"contract_exchange_rates": {DAI: 0.0004}})
        price_source.prices_error = fetch_error

        with pytest.raises(FetchError):
            await cache.refresh_rates()

        assert cache.state.contract_exchange_rates == {DAI: 0.0004}

    @pytest.mark.asyncio
    async def test_get_rate_is_case_insensitive(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 0.0005}
        await cache.refresh_rates()

        assert cache.get_rate(DAI.lower()) == 0.0005
        assert cache.get_rate(WETH) is None


class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_refreshes_and_schedules(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 0.0005}

        await cache.poll(60)
        try:
            assert cache.is_polling
            assert cache.config.interval == 60
            assert cache.get_rate(DAI) == 0.0005
        finally:
            cache.stop()
        assert not cache.is_polling

    @pytest.mark.asyncio
    async def test_poll_keeps_ticking(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        await cache.poll(0.01)
        await asyncio.sleep(0.1)
        cache.stop()

        assert len(price_source.price_calls) >= 2

    @pytest.mark.asyncio
    async def test_poll_swallows_errors_and_reschedules(
        self,
        cache: ExchangeRateCache,
        price_source: FakePriceSource,
        fetch_error: FetchError,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        price_source.prices_error = fetch_error

        await cache.poll(60)
        try:
            assert cache.is_polling
            assert "Error refreshing exchange rates" in caplog.text
        finally:
            cache.stop()

    @pytest.mark.asyncio
    async def test_disabled_poll_skips_refresh_but_reschedules(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"disabled": True})

        await cache.poll(60)
        try:
            assert cache.is_polling
            assert price_source.platform_calls == 0
        finally:
            cache.stop()

    @pytest.mark.asyncio
    async def test_repeated_poll_keeps_single_timer(self, cache: ExchangeRateCache) -> None:
        await cache.poll(60)
        first = cache._timer
        await cache.poll(60)
        try:
            assert first is not None and first.cancelled()
            assert cache.is_polling
        finally:
            cache.stop()


class TestConfigHooks:
    @pytest.mark.asyncio
    async def test_token_change_triggers_refresh(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {WETH.lower(): 1.0}

        cache.configure({"tokens": _tokens(WETH)})
        await cache.wait_for_pending_refreshes()

        assert cache.state.contract_exchange_rates == {WETH: 1.0}

    @pytest.mark.asyncio
    async def test_currency_and_chain_changes_trigger_refresh(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"native_currency": "usd"})
        await cache.wait_for_pending_refreshes()
        cache.configure({"chain_id": "137"})
        await cache.wait_for_pending_refreshes()

        assert [(slug, currency) for slug, _, currency in price_source.price_calls] == [
            ("ethereum", "usd"),
            ("polygon-pos", "usd"),
        ]

    @pytest.mark.asyncio
    async def test_unchanged_or_unrelated_keys_do_not_refresh(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"chain_id": "1"})
        cache.configure({"interval": 30, "threshold": 60})
        await cache.wait_for_pending_refreshes()

        assert price_source.price_calls == []

    @pytest.mark.asyncio
    async def test_no_refresh_while_disabled(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"disabled": True})
        cache.configure({"tokens": _tokens(WETH)})
        await cache.wait_for_pending_refreshes()

        assert price_source.price_calls == []

    @pytest.mark.asyncio
    async def test_late_refresh_does_not_overwrite_newer_one(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        price_source.prices = {DAI.lower(): 1.0, USDC.lower(): 2.0}
        price_source.price_delays = {DAI.lower(): 0.05}

        cache.configure({"tokens": _tokens(DAI)})
        await asyncio.sleep(0)
        cache.configure({"tokens": _tokens(USDC)})
        await cache.wait_for_pending_refreshes()

        assert cache.state.contract_exchange_rates == {USDC: 2.0}
        assert cache.get_rate(USDC) == 2.0
        assert cache.get_rate(DAI) is None

    @pytest.mark.asyncio
    async def test_late_refresh_discarded_after_tokens_cleared(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.update({"contract_exchange_rates": {WETH: 1.0}})
        price_source.prices = {DAI.lower(): 1.0}
        price_source.price_delays = {DAI.lower(): 0.05}

        cache.configure({"tokens": _tokens(DAI)})
        await asyncio.sleep(0)
        cache.configure({"tokens": ()})
        await cache.wait_for_pending_refreshes()

        assert cache.state.contract_exchange_rates == {WETH: 1.0}

    def test_change_without_running_loop_is_deferred(
        self, cache: ExchangeRateCache, price_source: FakePriceSource
    ) -> None:
        cache.configure({"tokens": _tokens(WETH)})

        assert cache.config.tokens == _tokens(WETH)
        assert price_source.price_calls == []
