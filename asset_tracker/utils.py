"""Address normalization and watch-request payload validation."""
from __future__ import annotations

import re
from typing import Any, Mapping

from web3 import Web3

from .errors import AssetValidationError

MAX_SYMBOL_LENGTH = 11
MAX_DECIMALS = 36

_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """Return the EIP-55 checksummed form of ``address``."""
    return Web3.to_checksum_address(address)


def is_valid_address(address: Any) -> bool:
    """True for a 0x-prefixed 20-byte hex string, any case."""
    return isinstance(address, str) and bool(_HEX_ADDRESS_RE.match(address))


def validate_asset_to_watch(asset: Mapping[str, Any]) -> None:
    """Raise ``AssetValidationError`` unless ``asset`` is a watchable ERC-20."""
    if not isinstance(asset, Mapping):
        raise AssetValidationError("Asset must be an object.")

    address = asset.get("address")
    symbol = asset.get("symbol")
    decimals = asset.get("decimals")

    if not address or not symbol or decimals is None:
        raise AssetValidationError("Must specify address, symbol, and decimals.")
    if not isinstance(symbol, str):
        raise AssetValidationError("Invalid symbol: not a string.")
    if len(symbol) > MAX_SYMBOL_LENGTH:
        raise AssetValidationError(
            f'Invalid symbol "{symbol}": longer than {MAX_SYMBOL_LENGTH} characters.'
        )

    try:
        num_decimals = int(decimals)
    except (TypeError, ValueError, OverflowError):
        num_decimals = -1
    if isinstance(decimals, bool) or not 0 <= num_decimals <= MAX_DECIMALS:
        raise AssetValidationError(
            f'Invalid decimals "{decimals}": must be 0 <= {MAX_DECIMALS}.'
        )

    if not is_valid_address(address):
        raise AssetValidationError(f'Invalid address "{address}".')
