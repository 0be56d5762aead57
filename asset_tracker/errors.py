"""Exception hierarchy for the asset tracker."""
from __future__ import annotations


class AssetTrackerError(Exception):
    """Base class for all asset tracker errors."""


class AssetValidationError(AssetTrackerError, ValueError):
    """A proposed asset payload is malformed."""


class UnsupportedAssetTypeError(AssetValidationError):
    """A proposed asset has a type the tracker cannot watch."""

    def __init__(self, asset_type: str) -> None:
        super().__init__(f"Asset of type {asset_type} not supported")
        self.asset_type = asset_type


class UserRejectedRequestError(AssetTrackerError):
    """The user declined a suggested asset."""

    def __init__(self, message: str = "User rejected to watch the asset.") -> None:
        super().__init__(message)


class FetchError(AssetTrackerError):
    """A remote HTTP lookup failed."""

    def __init__(self, url: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"Fetch of {url} failed: {reason}")
        self.url = url
        self.status = status


class RpcError(AssetTrackerError):
    """A JSON-RPC call failed on every configured endpoint."""
