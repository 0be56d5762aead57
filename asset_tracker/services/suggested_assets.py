"""Approval workflow for externally suggested assets (watchAsset)."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Mapping

from ..errors import UnsupportedAssetTypeError, UserRejectedRequestError
from ..models import Asset, SuggestedAssetRequest, SuggestedAssetStatus
from ..store import ObservableStore
from ..utils import normalize_address, validate_asset_to_watch
from .asset_registry import AssetRegistry

logger = logging.getLogger(__name__)

RequestListener = Callable[[SuggestedAssetRequest], None]

ERC20 = "ERC20"


@dataclass(frozen=True)
class SuggestedAssetsConfig:
    supported_types: tuple[str, ...] = (ERC20,)


@dataclass(frozen=True)
class SuggestedAssetsState:
    suggested_assets: tuple[SuggestedAssetRequest, ...] = ()


def _asset_from_payload(payload: Mapping[str, Any], validated: bool) -> Asset:
    address = payload.get("address") or ""
    decimals = payload.get("decimals")
    return Asset(
        address=normalize_address(address) if validated else str(address),
        symbol=payload.get("symbol"),
        decimals=int(decimals) if validated else decimals,
        image=payload.get("image"),
    )


class SuggestedAssetWorkflow(ObservableStore[SuggestedAssetsConfig, SuggestedAssetsState]):
    """Tracks proposed assets until the user accepts or rejects them.

    Each proposal gets a future that settles exactly once: with the asset's
    checksummed address when accepted, or with an exception when rejected
    or when adding the asset fails. Settled requests leave
    ``state.suggested_assets``.
    """

    name = "SuggestedAssetWorkflow"

    def __init__(
        self,
        registry: AssetRegistry,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid1()),
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(SuggestedAssetsConfig(), SuggestedAssetsState())
        self._registry = registry
        self._id_factory = id_factory
        self._clock = clock
        self._results: dict[str, asyncio.Future[str]] = {}
        self._claimed: set[str] = set()
        self._pending_listeners: list[RequestListener] = []
        self._finished_listeners: list[RequestListener] = []
        self._handlers: dict[str, Callable[[SuggestedAssetRequest], Awaitable[None]]] = {
            ERC20: self._accept_erc20,
        }
        self.initialize()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_pending_listener(self, listener: RequestListener) -> None:
        """Call ``listener`` with every new pending request."""
        self._pending_listeners.append(listener)

    def add_finished_listener(self, listener: RequestListener) -> None:
        """Call ``listener`` once per request when it reaches a terminal status."""
        self._finished_listeners.append(listener)

    def _emit(self, listeners: Iterable[RequestListener], request: SuggestedAssetRequest) -> None:
        for listener in list(listeners):
            try:
                listener(request)
            except Exception as e:
                logger.error("Suggested asset listener failed for %s: %s", request.id, e)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> SuggestedAssetRequest | None:
        for request in self.state.suggested_assets:
            if request.id == request_id:
                return request
        return None

    def _remove(self, request_id: str) -> None:
        remaining = tuple(r for r in self.state.suggested_assets if r.id != request_id)
        self.update({"suggested_assets": remaining})

    def _settle(self, request: SuggestedAssetRequest) -> None:
        result = self._results.pop(request.id, None)
        if result is not None and not result.done():
            if request.status is SuggestedAssetStatus.ACCEPTED:
                result.set_result(request.asset.address)
            elif request.status is SuggestedAssetStatus.REJECTED:
                result.set_exception(UserRejectedRequestError())
            else:
                result.set_exception(
                    request.error or RuntimeError(f"Unknown status: {request.status}")
                )
        logger.info("Suggested asset %s %s", request.id, request.status.value)
        self._emit(self._finished_listeners, request)

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def propose(
        self, asset: Mapping[str, Any], asset_type: str
    ) -> tuple[asyncio.Future[str], str]:
        """Suggest an asset for the user to approve.

        Invalid suggestions fail immediately: the returned future already
        holds the validation error and the request is never stored as
        pending.

        Returns:
            The future settled on the request's terminal transition, and the
            request id.
        """
        result: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        request_id = self._id_factory()

        try:
            if asset_type not in self.config.supported_types:
                raise UnsupportedAssetTypeError(asset_type)
            validate_asset_to_watch(asset)
            proposed = _asset_from_payload(asset, validated=True)
        except Exception as e:
            payload = asset if isinstance(asset, Mapping) else {}
            failed = SuggestedAssetRequest(
                id=request_id,
                created_at=self._clock(),
                asset_type=asset_type,
                asset=_asset_from_payload(payload, validated=False),
                status=SuggestedAssetStatus.FAILED,
                error=e,
            )
            self._results[request_id] = result
            logger.warning("Rejected invalid asset suggestion: %s", e)
            self._settle(failed)
            return result, request_id

        request = SuggestedAssetRequest(
            id=request_id,
            created_at=self._clock(),
            asset_type=asset_type,
            asset=proposed,
        )
        self._results[request_id] = result
        self.update({"suggested_assets": self.state.suggested_assets + (request,)})
        self._emit(self._pending_listeners, request)
        return result, request_id

    async def accept(self, request_id: str) -> None:
        """Accept a pending suggestion and add its asset to the registry."""
        request = self.get_request(request_id)
        if request is None or request_id in self._claimed:
            return

        self._claimed.add(request_id)
        try:
            handler = self._handlers.get(request.asset_type)
            if handler is None:
                raise UnsupportedAssetTypeError(request.asset_type)
            await handler(request)
        except Exception as e:
            self._settle(replace(request, status=SuggestedAssetStatus.FAILED, error=e))
        else:
            self._settle(replace(request, status=SuggestedAssetStatus.ACCEPTED))
        finally:
            self._claimed.discard(request_id)
            self._remove(request_id)

    def reject(self, request_id: str) -> None:
        """Reject a pending suggestion; unknown or in-flight ids are ignored."""
        request = self.get_request(request_id)
        if request is None or request_id in self._claimed:
            return

        self._settle(replace(request, status=SuggestedAssetStatus.REJECTED))
        self._remove(request_id)

    async def _accept_erc20(self, request: SuggestedAssetRequest) -> None:
        asset = request.asset
        await self._registry.add_asset(
            asset.address, asset.symbol, asset.decimals, asset.image
        )


class AllowlistPolicy:
    """Pending-request listener that auto-accepts allowlisted addresses."""

    def __init__(self, workflow: SuggestedAssetWorkflow, addresses: Iterable[str]) -> None:
        self._workflow = workflow
        self._allowed = {a.lower() for a in addresses}
        self._tasks: set[asyncio.Task[None]] = set()

    def __call__(self, request: SuggestedAssetRequest) -> None:
        if request.asset.address.lower() not in self._allowed:
            return
        logger.info("Auto-accepting allowlisted asset %s", request.asset.address)
        task = asyncio.get_running_loop().create_task(self._workflow.accept(request.id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for in-flight auto-accepts."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
