"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from ...config import ChainConfig, KnownContractConfig
from ...errors import RpcError
from ...models import CollectibleContract
from ...utils import normalize_address

logger = logging.getLogger(__name__)

ERC721_INTERFACE_ID = "0x80ac58cd"


def function_selector(signature: str) -> bytes:
    """First four bytes of the keccak hash of a function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def encode_call(signature: str, types: list[str], args: list[Any]) -> str:
    """Hex calldata for ``signature`` called with ABI-encoded ``args``."""
    return "0x" + (function_selector(signature) + abi_encode(types, args)).hex()


def _result_bytes(result: str) -> bytes:
    raw = result[2:] if result.startswith("0x") else result
    return bytes.fromhex(raw)


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RpcError("No RPC endpoints configured")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RpcError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RpcError(f"All RPC endpoints failed. Last error: {last_error}")

    async def eth_call(self, to: str, data: str) -> str:
        """Execute a read-only contract call at the latest block."""
        result = await self.rpc_call("eth_call", [{"to": to, "data": data}, "latest"])
        if not isinstance(result, str):
            raise RpcError(f"Unexpected eth_call result: {result!r}")
        return result

    async def supports_interface(self, address: str, interface_id: str) -> bool:
        """ERC-165 ``supportsInterface`` query."""
        data = encode_call(
            "supportsInterface(bytes4)", ["bytes4"], [bytes.fromhex(interface_id[2:])]
        )
        raw = _result_bytes(await self.eth_call(address, data))
        if not raw:
            raise RpcError(f"Empty supportsInterface response from {address}")
        try:
            (supported,) = abi_decode(["bool"], raw)
        except DecodingError as e:
            raise RpcError(f"Malformed supportsInterface response from {address}: {e}") from e
        return supported

    async def read_string(self, address: str, signature: str) -> str | None:
        """Call a no-argument string getter such as ``name()`` or ``symbol()``.

        Falls back to ``bytes32`` decoding for contracts that predate the
        string return type. Returns ``None`` for an empty response.
        """
        raw = _result_bytes(await self.eth_call(address, encode_call(signature, [], [])))
        if not raw:
            return None
        try:
            (value,) = abi_decode(["string"], raw)
        except DecodingError:
            try:
                (packed,) = abi_decode(["bytes32"], raw)
            except DecodingError as e:
                raise RpcError(f"Malformed {signature} response from {address}: {e}") from e
            value = packed.rstrip(b"\x00").decode("utf-8", errors="replace")
        return value or None


class ContractKindDetector:
    """Decide whether a token contract is non-fungible (ERC-721).

    Addresses listed in ``known_contracts`` are answered without a network
    call; anything else is checked over RPC on the chain's client. Errors
    propagate so the caller can treat the kind as unknown.
    """

    def __init__(
        self,
        clients: dict[str, EvmClient],
        known_contracts: dict[str, KnownContractConfig] | None = None,
    ) -> None:
        self._clients = clients
        self._known = {k.lower(): v for k, v in (known_contracts or {}).items()}

    async def is_non_fungible(self, address: str, chain_id: str) -> bool:
        known = self._known.get(address.lower())
        if known is not None and known.erc721:
            return True
        if known is not None and known.erc20:
            return False

        client = self._clients.get(str(chain_id))
        if client is None:
            raise RpcError(f"No RPC client configured for chain {chain_id}")
        return await client.supports_interface(
            normalize_address(address), ERC721_INTERFACE_ID
        )


class ContractInfoReader:
    """Read a token contract's ``name()`` and ``symbol()`` over RPC.

    A getter that reverts or returns garbage leaves that field ``None``;
    a chain without a configured client raises ``RpcError``.
    """

    def __init__(self, clients: dict[str, EvmClient]) -> None:
        self._clients = clients

    async def _read(self, client: EvmClient, address: str, signature: str) -> str | None:
        try:
            return await client.read_string(address, signature)
        except RpcError as e:
            logger.debug("%s failed for %s: %s", signature, address, e)
            return None

    async def fetch_contract_info(self, address: str, chain_id: str) -> CollectibleContract:
        client = self._clients.get(str(chain_id))
        if client is None:
            raise RpcError(f"No RPC client configured for chain {chain_id}")
        address = normalize_address(address)
        return CollectibleContract(
            address=address,
            chain_id=str(chain_id),
            name=await self._read(client, address, "name()"),
            symbol=await self._read(client, address, "symbol()"),
        )
