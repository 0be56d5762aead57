"""Shared test fixtures and sample data."""
from __future__ import annotations

import asyncio
import textwrap
from pathlib import Path
from typing import Sequence

import pytest

from asset_tracker.config import (
    AccountConfig,
    AppConfig,
    ChainConfig,
    CoinGeckoConfig,
    KnownContractConfig,
    RatesConfig,
    SeedAssetConfig,
    SuggestionsConfig,
    TrackerConfig,
)
from asset_tracker.errors import FetchError, RpcError
from asset_tracker.models import ChainPlatform, CollectibleContract

ACCOUNT = "0x1111111111111111111111111111111111111111"
OTHER_ACCOUNT = "0x2222222222222222222222222222222222222222"

DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
KITTIES = "0x06012c8cf97BEaD5deAe237070F9587f8E7A266d"

START_TIME = 1_700_000_000.0


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDetector:
    """Classifies addresses from a fixed set, suspending like a network call."""

    def __init__(self) -> None:
        self.non_fungible: set[str] = set()
        self.delays: dict[str, float] = {}
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    async def is_non_fungible(self, address: str, chain_id: str) -> bool:
        self.calls.append((address, chain_id))
        await asyncio.sleep(self.delays.get(address.lower(), 0))
        if self.fail:
            raise RpcError("execution reverted")
        return address.lower() in self.non_fungible


class FakePriceSource:
    """In-memory stand-in for the CoinGecko client."""

    def __init__(self) -> None:
        self.platforms: tuple[ChainPlatform, ...] = (
            ChainPlatform(id="ethereum", chain_identifier=1, name="Ethereum"),
            ChainPlatform(id="polygon-pos", chain_identifier=137, name="Polygon POS"),
            ChainPlatform(id="osmosis", chain_identifier=None, name="Osmosis"),
        )
        self.prices: dict[str, float] = {}
        self.price_delays: dict[str, float] = {}
        self.platforms_error: Exception | None = None
        self.prices_error: Exception | None = None
        self.platform_calls = 0
        self.price_calls: list[tuple[str, list[str], str]] = []

    async def fetch_asset_platforms(self) -> tuple[ChainPlatform, ...]:
        self.platform_calls += 1
        if self.platforms_error is not None:
            raise self.platforms_error
        return self.platforms

    async def fetch_token_prices(
        self, chain_slug: str, addresses: Sequence[str], vs_currency: str
    ) -> dict[str, float]:
        self.price_calls.append((chain_slug, list(addresses), vs_currency))
        delays = [self.price_delays.get(a.lower(), 0) for a in addresses]
        await asyncio.sleep(max(delays, default=0))
        if self.prices_error is not None:
            raise self.prices_error
        return {
            a.lower(): self.prices[a.lower()]
            for a in addresses
            if a.lower() in self.prices
        }


class FakeContractInfo:
    """Describes contracts from a fixed table, suspending like a network call."""

    def __init__(self) -> None:
        self.names: dict[str, tuple[str | None, str | None]] = {}
        self.delay = 0.0
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    async def fetch_contract_info(self, address: str, chain_id: str) -> CollectibleContract:
        self.calls.append((address, chain_id))
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RpcError("execution reverted")
        name, symbol = self.names.get(address.lower(), (None, None))
        return CollectibleContract(address=address, chain_id=chain_id, name=name, symbol=symbol)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture()
def price_source() -> FakePriceSource:
    return FakePriceSource()


@pytest.fixture()
def contract_info() -> FakeContractInfo:
    return FakeContractInfo()


@pytest.fixture()
def fetch_error() -> FetchError:
    return FetchError("https://api.example.com", "HTTP 503", status=503)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_app_config() -> AppConfig:
    return AppConfig(
        tracker=TrackerConfig(selected_account=ACCOUNT, chain_id="1", native_currency="eth"),
        rates=RatesConfig(interval_seconds=60, threshold_seconds=3600, batch_size=2),
        coingecko=CoinGeckoConfig(base_url="https://api.example.com/api/v3"),
        chains={
            "1": ChainConfig(rpc_endpoints=("https://rpc.example.com",), rpc_timeout=5),
            "137": ChainConfig(rpc_endpoints=("https://polygon.example.com",)),
        },
        accounts=(
            AccountConfig(
                label="main",
                address=ACCOUNT,
                assets=(
                    SeedAssetConfig(address=DAI, chain_id="1", symbol="DAI", decimals=18),
                    SeedAssetConfig(address=USDC, chain_id="1", symbol="USDC", decimals=6),
                    SeedAssetConfig(address=USDT, chain_id="137", symbol="USDT", decimals=6),
                ),
            ),
            AccountConfig(
                label="cold",
                address=OTHER_ACCOUNT,
                assets=(
                    SeedAssetConfig(address=WETH, chain_id="1", symbol="WETH", decimals=18),
                ),
            ),
        ),
        known_contracts={KITTIES.lower(): KnownContractConfig(erc721=True)},
        suggestions=SuggestionsConfig(auto_accept=(WETH,)),
    )


SAMPLE_YAML = textwrap.dedent(f"""\
    tracker:
      selected_account: "{ACCOUNT}"
      chain_id: 1
      native_currency: usd
    rates:
      interval_seconds: 120
      threshold_seconds: 7200
      batch_size: 50
    coingecko:
      base_url: "https://api.example.com/api/v3/"
      api_key: "${{TEST_CG_KEY}}"
    chains:
      1:
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
    accounts:
      - label: main
        address: "{ACCOUNT}"
        assets:
          - chain_id: 1
            address: "{DAI}"
            symbol: DAI
            decimals: 18
    known_contracts:
      "{KITTIES}":
        erc721: true
    suggestions:
      auto_accept: ["{WETH}"]
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
