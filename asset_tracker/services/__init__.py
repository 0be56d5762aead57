"""Service modules"""
from .asset_registry import AssetRegistry
from .collectibles import CollectibleRegistry
from .exchange_rates import ExchangeRateCache
from .suggested_assets import AllowlistPolicy, SuggestedAssetWorkflow
from .tracker import AssetTracker

__all__ = [
    "AllowlistPolicy",
    "AssetRegistry",
    "AssetTracker",
    "CollectibleRegistry",
    "ExchangeRateCache",
    "SuggestedAssetWorkflow",
]
