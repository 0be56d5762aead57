"""CoinGecko price and asset-platform lookups."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi

from ..config import CoinGeckoConfig
from ..errors import FetchError
from ..models import ChainPlatform

logger = logging.getLogger(__name__)


class CoinGeckoClient:
    """Fetch token prices and supported chains from the CoinGecko API."""

    def __init__(self, config: CoinGeckoConfig) -> None:
        self.base_url = config.base_url.rstrip("/")
        self.api_key = config.api_key
        self.timeout = config.timeout

    def platforms_url(self) -> str:
        return f"{self.base_url}/asset_platforms"

    def token_price_url(self, chain_slug: str, query: str) -> str:
        return f"{self.base_url}/simple/token_price/{chain_slug}?{query}"

    async def fetch_json(self, url: str) -> Any:
        """GET ``url`` and return the decoded JSON body.

        Raises:
            FetchError: on a non-200 response, transport error or timeout.
        """
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        raise FetchError(
                            url, f"HTTP {response.status}", status=response.status
                        )
                    return await response.json()
        except FetchError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FetchError(url, str(e) or type(e).__name__) from e

    async def fetch_asset_platforms(self) -> tuple[ChainPlatform, ...]:
        """Fetch the list of chains CoinGecko prices tokens on."""
        data = await self.fetch_json(self.platforms_url())
        if not isinstance(data, list):
            raise FetchError(self.platforms_url(), "unexpected platforms payload")

        platforms: list[ChainPlatform] = []
        for item in data:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            chain_identifier = item.get("chain_identifier")
            platforms.append(
                ChainPlatform(
                    id=item["id"],
                    chain_identifier=(
                        int(chain_identifier) if chain_identifier is not None else None
                    ),
                    name=item.get("name") or "",
                )
            )
        logger.debug("Fetched %d asset platforms", len(platforms))
        return tuple(platforms)

    async def fetch_token_prices(
        self,
        chain_slug: str,
        addresses: Sequence[str],
        vs_currency: str,
    ) -> dict[str, float]:
        """Fetch prices for ``addresses`` in one request.

        Returns a map of lower-cased contract address to price; addresses the
        API does not know are absent from the result.
        """
        if not addresses:
            return {}

        currency = vs_currency.lower()
        pairs = ",".join(addresses)
        query = f"contract_addresses={pairs}&vs_currencies={currency}"
        url = self.token_price_url(chain_slug, query)
        data = await self.fetch_json(url)
        if not isinstance(data, dict):
            raise FetchError(url, "unexpected token price payload")

        prices: dict[str, float] = {}
        for address, quote in data.items():
            if not isinstance(quote, dict) or quote.get(currency) is None:
                continue
            prices[address.lower()] = float(quote[currency])
        return prices
