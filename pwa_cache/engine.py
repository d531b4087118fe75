from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol, Set

import httpx

from .config import AppConfig, CacheConfig
from .errors import PrecacheEntryFailure, StoreOpenFailure
from .http_client import ResourceFetcher
from .interceptor import RequestInterceptor
from .lifecycle import LifecycleController
from .logging import get_logger
from .models import LifecycleState, PrecacheResult, ResourceRequest, ResourceResponse
from .storage import CacheStore

logger = get_logger(__name__)


class ServiceWorker(Protocol):
    """Hooks a host runtime calls on the cache engine."""

    async def on_install(self) -> List[PrecacheResult]:
        ...

    async def on_activate(self) -> Set[str]:
        ...

    async def on_request(self, request: ResourceRequest) -> ResourceResponse:
        ...


class CacheEngine:
    """Owns the active version's controller and interceptor.

    A new version only replaces the active one once its activation sweep has
    finished, so a failed install leaves the previous version serving.
    """

    def __init__(self, config: CacheConfig, store: CacheStore, fetcher: ResourceFetcher) -> None:
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.pending: Optional[LifecycleController] = None
        self.active: Optional[LifecycleController] = None
        self.interceptor: Optional[RequestInterceptor] = None
        self._activation: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls, config: AppConfig, *, client: Optional[httpx.AsyncClient] = None
    ) -> "CacheEngine":
        return cls(
            config.cache,
            CacheStore(config.cache.db_path),
            ResourceFetcher.from_config(config.network, client=client),
        )

    @property
    def version(self) -> str:
        return self.config.version

    async def start(self) -> None:
        try:
            await self._restore_active()
        except StoreOpenFailure as exc:
            logger.error("engine.restore_failed", version=exc.version, error=exc.reason)
        if self.active is not None and self.active.version == self.version:
            logger.info("engine.up_to_date", version=self.version)
            return

        try:
            await self.on_install()
        except (StoreOpenFailure, PrecacheEntryFailure) as exc:
            logger.error(
                "engine.install_failed",
                version=self.version,
                serving=self.active.version if self.active else None,
                error=str(exc),
            )
            return

        if self.config.skip_waiting:
            self.skip_waiting()
            await self._activate_quietly()
        else:
            self._activation = asyncio.create_task(self._activate_quietly())
            self._activation.add_done_callback(self._activation_done)

    async def _activate_quietly(self) -> None:
        try:
            await self.on_activate()
        except StoreOpenFailure as exc:
            logger.error(
                "engine.activate_failed",
                version=self.version,
                serving=self.active.version if self.active else None,
                error=exc.reason,
            )

    def _activation_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "engine.activate_failed",
                version=self.version,
                serving=self.active.version if self.active else None,
                error=str(exc),
                exc_info=exc,
            )

    async def _restore_active(self) -> None:
        marker = await self.store.get_active_version()
        if not marker or marker not in await self.store.list_versions():
            return
        controller = self._controller(marker)
        await controller.resume()
        self._promote(controller)

    def _controller(self, version: str) -> LifecycleController:
        return LifecycleController(
            version,
            self.store,
            self.fetcher,
            manifest=self.config.manifest,
            fail_on_precache_error=self.config.fail_on_precache_error,
        )

    def _promote(self, controller: LifecycleController) -> None:
        if controller.table is None:
            raise RuntimeError(f"version {controller.version} has no open cache table")
        previous = self.active
        if previous is not None and previous is not controller:
            previous.retire()
        self.active = controller
        self.interceptor = RequestInterceptor(
            controller.table,
            self.fetcher,
            shell_document=self.config.shell_document,
            cache_cross_origin=self.config.cache_cross_origin,
        )

    async def on_install(self) -> List[PrecacheResult]:
        controller = self._controller(self.version)
        self.pending = controller
        try:
            return await controller.install()
        except (StoreOpenFailure, PrecacheEntryFailure):
            self.pending = None
            raise

    async def on_activate(self) -> Set[str]:
        controller = self.pending
        if controller is None:
            raise RuntimeError("no installed version is waiting to activate")
        try:
            deleted = await controller.activate()
        finally:
            self.pending = None
        self._promote(controller)
        return deleted

    async def on_request(self, request: ResourceRequest) -> ResourceResponse:
        interceptor = self.interceptor
        if interceptor is None:
            return await self.fetcher.fetch(request)
        return await interceptor.handle(request)

    def skip_waiting(self) -> bool:
        controller = self.pending
        if controller is None or controller.state is not LifecycleState.WAITING:
            return False
        controller.skip_waiting()
        return True

    def clients_closed(self) -> bool:
        controller = self.pending
        if controller is None or controller.state is not LifecycleState.WAITING:
            return False
        controller.clients_closed()
        return True

    async def clear_all(self) -> List[str]:
        """Delete every cached version; the active version restarts empty."""
        deleted = await self.store.clear_all()
        logger.info("engine.cleared", versions=deleted)
        if self.active is not None:
            table = await self.store.open(self.active.version)
            self.active.table = table
            if self.interceptor is not None:
                self.interceptor.table = table
            await self.store.set_active_version(self.active.version)
        if self.pending is not None and self.pending.table is not None:
            self.pending.table = await self.store.open(self.pending.version)
        return deleted

    async def status(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "active_version": self.active.version if self.active else None,
            "state": self.active.state.value if self.active else None,
            "pending_state": self.pending.state.value if self.pending else None,
            "versions": sorted(await self.store.list_versions()),
        }

    async def close(self) -> None:
        if self._activation is not None and not self._activation.done():
            self._activation.cancel()
            try:
                await self._activation
            except asyncio.CancelledError:
                pass
        if self.interceptor is not None:
            await self.interceptor.drain()
        await self.fetcher.close()
