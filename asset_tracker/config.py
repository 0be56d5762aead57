"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .utils import is_valid_address

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrackerConfig:
    selected_account: str = ""
    chain_id: str = "1"
    native_currency: str = "eth"


@dataclass(frozen=True)
class RatesConfig:
    disabled: bool = False
    interval_seconds: int = 180
    threshold_seconds: int = 6 * 60 * 60
    batch_size: int = 100


@dataclass(frozen=True)
class CoinGeckoConfig:
    base_url: str = "https://api.coingecko.com/api/v3"
    api_key: str = ""
    timeout: int = 30


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30


@dataclass(frozen=True)
class SeedAssetConfig:
    address: str = ""
    chain_id: str = "1"
    symbol: str | None = None
    decimals: int | None = None
    image: str | None = None


@dataclass(frozen=True)
class AccountConfig:
    label: str = ""
    address: str = ""
    assets: tuple[SeedAssetConfig, ...] = ()


@dataclass(frozen=True)
class KnownContractConfig:
    erc20: bool = False
    erc721: bool = False


@dataclass(frozen=True)
class SuggestionsConfig:
    auto_accept: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    rates: RatesConfig = field(default_factory=RatesConfig)
    coingecko: CoinGeckoConfig = field(default_factory=CoinGeckoConfig)
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    accounts: tuple[AccountConfig, ...] = ()
    known_contracts: dict[str, KnownContractConfig] = field(default_factory=dict)
    suggestions: SuggestionsConfig = field(default_factory=SuggestionsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _build_tracker(raw: dict[str, Any]) -> TrackerConfig:
    return TrackerConfig(
        selected_account=raw.get("selected_account", "") or "",
        chain_id=str(raw.get("chain_id", "1")),
        native_currency=raw.get("native_currency", "eth"),
    )


def _build_rates(raw: dict[str, Any]) -> RatesConfig:
    return RatesConfig(
        disabled=bool(raw.get("disabled", False)),
        interval_seconds=int(raw.get("interval_seconds", 180)),
        threshold_seconds=int(raw.get("threshold_seconds", 6 * 60 * 60)),
        batch_size=int(raw.get("batch_size", 100)),
    )


def _build_coingecko(raw: dict[str, Any]) -> CoinGeckoConfig:
    return CoinGeckoConfig(
        base_url=raw.get("base_url", CoinGeckoConfig.base_url).rstrip("/"),
        api_key=raw.get("api_key", "") or "",
        timeout=int(raw.get("timeout", 30)),
    )


def _build_chains(raw: dict[Any, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for chain_id, cfg in raw.items():
        cfg = cfg or {}
        chains[str(chain_id)] = ChainConfig(
            rpc_endpoints=tuple(e for e in cfg.get("rpc_endpoints", []) if e),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
        )
    return chains


def _build_seed_assets(raw: list[dict[str, Any]]) -> tuple[SeedAssetConfig, ...]:
    return tuple(
        SeedAssetConfig(
            address=a.get("address", ""),
            chain_id=str(a.get("chain_id", "1")),
            symbol=a.get("symbol"),
            decimals=_optional_int(a.get("decimals")),
            image=a.get("image"),
        )
        for a in raw
    )


def _build_accounts(raw: list[dict[str, Any]]) -> tuple[AccountConfig, ...]:
    accounts: list[AccountConfig] = []
    for acc in raw:
        accounts.append(
            AccountConfig(
                label=acc.get("label", ""),
                address=acc.get("address", ""),
                assets=_build_seed_assets(acc.get("assets", []) or []),
            )
        )
    return tuple(accounts)


def _build_known_contracts(raw: dict[str, Any]) -> dict[str, KnownContractConfig]:
    return {
        address.lower(): KnownContractConfig(
            erc20=bool((flags or {}).get("erc20", False)),
            erc721=bool((flags or {}).get("erc721", False)),
        )
        for address, flags in raw.items()
    }


def _build_suggestions(raw: dict[str, Any]) -> SuggestionsConfig:
    return SuggestionsConfig(auto_accept=tuple(raw.get("auto_accept", []) or []))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        tracker=_build_tracker(raw.get("tracker") or {}),
        rates=_build_rates(raw.get("rates") or {}),
        coingecko=_build_coingecko(raw.get("coingecko") or {}),
        chains=_build_chains(raw.get("chains") or {}),
        accounts=_build_accounts(raw.get("accounts") or []),
        known_contracts=_build_known_contracts(raw.get("known_contracts") or {}),
        suggestions=_build_suggestions(raw.get("suggestions") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.accounts:
        raise ValueError("At least one account must be configured")

    if cfg.rates.interval_seconds <= 0:
        raise ValueError("rates.interval_seconds must be positive")
    if cfg.rates.threshold_seconds <= 0:
        raise ValueError("rates.threshold_seconds must be positive")
    if cfg.rates.batch_size <= 0:
        raise ValueError("rates.batch_size must be positive")

    for account in cfg.accounts:
        if not is_valid_address(account.address):
            raise ValueError(
                f"Account '{account.label}' has an invalid address '{account.address}'"
            )
        for asset in account.assets:
            if not is_valid_address(asset.address):
                raise ValueError(
                    f"Account '{account.label}' lists invalid asset address "
                    f"'{asset.address}'"
                )
            if cfg.chains and asset.chain_id not in cfg.chains:
                raise ValueError(
                    f"Account '{account.label}' references unknown chain "
                    f"'{asset.chain_id}'"
                )

    for address in cfg.suggestions.auto_accept:
        if not is_valid_address(address):
            raise ValueError(f"Invalid auto_accept address '{address}'")
