"""Protocol interfaces for the asset tracker."""
from .asset_kind_detector import AssetKindDetector
from .contract_info import ContractInfoSource
from .price_source import PriceSource

__all__ = ["AssetKindDetector", "ContractInfoSource", "PriceSource"]
