from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence, Set

from .errors import CacheWriteFailure, NetworkFailure, PrecacheEntryFailure, StoreOpenFailure
from .http_client import ResourceFetcher
from .logging import get_logger
from .models import CachedResource, LifecycleState, PrecacheResult, ResourceKey
from .storage import CacheStore, ResourceTable

logger = get_logger(__name__)


class LifecycleController:
    """Drives one cache version through installing, waiting, activating, active.

    Installation precaches every manifest entry independently: one broken
    asset is recorded on its ``PrecacheResult`` and the others still land.
    Activation deletes every other version before the state turns active.
    """

    def __init__(
        self,
        version: str,
        store: CacheStore,
        fetcher: ResourceFetcher,
        *,
        manifest: Sequence[str],
        fail_on_precache_error: bool = False,
    ) -> None:
        self.version = version
        self.store = store
        self.fetcher = fetcher
        self.manifest = list(manifest)
        self.fail_on_precache_error = fail_on_precache_error
        self.state = LifecycleState.INSTALLING
        self.table: Optional[ResourceTable] = None
        self.results: List[PrecacheResult] = []
        self._released = asyncio.Event()

    @property
    def is_active(self) -> bool:
        return self.state is LifecycleState.ACTIVE

    async def install(self) -> List[PrecacheResult]:
        if self.state is not LifecycleState.INSTALLING:
            raise RuntimeError(f"cannot install version {self.version} in state {self.state.value}")

        logger.info("lifecycle.install.start", version=self.version, entries=len(self.manifest))
        try:
            self.table = await self.store.open(self.version)
        except StoreOpenFailure as exc:
            self.state = LifecycleState.REDUNDANT
            logger.error("lifecycle.install.store_failed", version=self.version, error=exc.reason)
            raise

        table = self.table
        self.results = list(
            await asyncio.gather(*(self._precache_entry(table, url) for url in self.manifest))
        )
        failed = [result.key.url for result in self.results if not result.ok]

        if failed and self.fail_on_precache_error:
            self.state = LifecycleState.REDUNDANT
            await self.store.delete(table)
            self.table = None
            logger.error("lifecycle.install.failed", version=self.version, failed=failed)
            raise PrecacheEntryFailure(self.version, failed)

        self.state = LifecycleState.WAITING
        logger.info(
            "lifecycle.install.complete",
            version=self.version,
            cached=len(self.results) - len(failed),
            failed=len(failed),
        )
        return self.results

    async def _precache_entry(self, table: ResourceTable, url: str) -> PrecacheResult:
        key = ResourceKey.for_request("GET", url, origin=self.fetcher.origin)
        try:
            response = await self.fetcher.get(key.url)
        except NetworkFailure as exc:
            logger.warning("precache.entry_failed", version=self.version, url=key.url, error=exc.reason)
            return PrecacheResult(key=key, ok=False, error=exc.reason)

        if response.status != 200:
            logger.warning(
                "precache.entry_failed", version=self.version, url=key.url, status=response.status
            )
            return PrecacheResult(
                key=key, ok=False, status=response.status, error=f"HTTP {response.status}"
            )

        try:
            await self.store.put(table, key, CachedResource.from_response(response))
        except CacheWriteFailure as exc:
            logger.warning("precache.entry_failed", version=self.version, url=key.url, error=exc.reason)
            return PrecacheResult(key=key, ok=False, status=response.status, error=exc.reason)

        logger.debug("precache.entry_cached", version=self.version, url=key.url)
        return PrecacheResult(key=key, ok=True, status=response.status)

    def skip_waiting(self) -> None:
        logger.info("lifecycle.skip_waiting", version=self.version)
        self._released.set()

    def clients_closed(self) -> None:
        logger.info("lifecycle.clients_closed", version=self.version)
        self._released.set()

    async def activate(self) -> Set[str]:
        """Wait for release, sweep stale versions, then become active.

        Returns the versions that were deleted.
        """
        if self.state is not LifecycleState.WAITING:
            raise RuntimeError(f"cannot activate version {self.version} in state {self.state.value}")

        await self._released.wait()
        self.state = LifecycleState.ACTIVATING
        logger.info("lifecycle.activate.start", version=self.version)

        deleted: Set[str] = set()
        try:
            # a clear-all while waiting may have dropped this version too
            self.table = await self.store.open(self.version)
            for version in await self.store.list_versions():
                if version == self.version:
                    continue
                if await self.store.delete(version):
                    deleted.add(version)
                    logger.info("sweep.deleted", version=version, current=self.version)
            await self.store.set_active_version(self.version)
        except StoreOpenFailure as exc:
            self.state = LifecycleState.REDUNDANT
            logger.error("lifecycle.activate.store_failed", version=self.version, error=exc.reason)
            raise

        self.state = LifecycleState.ACTIVE
        logger.info("lifecycle.activate.complete", version=self.version, deleted=sorted(deleted))
        return deleted

    async def resume(self) -> None:
        """Mark an already populated version active after a process restart."""
        self.table = await self.store.open(self.version)
        self._released.set()
        self.state = LifecycleState.ACTIVE
        logger.info("lifecycle.resumed", version=self.version)

    def retire(self) -> None:
        self.state = LifecycleState.REDUNDANT
        logger.info("lifecycle.retired", version=self.version)
