from __future__ import annotations

import asyncio
from typing import Optional, Set

from .errors import CacheReadFailure, CacheWriteFailure, NetworkFailure
from .http_client import ResourceFetcher
from .logging import get_logger
from .models import CachedResource, ResourceKey, ResourceRequest, ResourceResponse
from .storage import ResourceTable

logger = get_logger(__name__)


class RequestInterceptor:
    """Cache-first, network-fallback, write-through handling for one version.

    A hit is served without touching the network; a same-origin request
    whose exact URL misses may still hit the entry stored for its bare
    path. A successful network
    response is copied into the table by a background task so the caller
    never waits on the write. Failed navigations fall back to the cached
    shell document.
    """

    def __init__(
        self,
        table: ResourceTable,
        fetcher: ResourceFetcher,
        *,
        shell_document: str = "/index.html",
        cache_cross_origin: bool = False,
    ) -> None:
        self.table = table
        self.fetcher = fetcher
        self.shell_key = ResourceKey.for_request("GET", shell_document, origin=fetcher.origin)
        self.cache_cross_origin = cache_cross_origin
        self._pending: Set[asyncio.Task] = set()

    async def handle(self, request: ResourceRequest) -> ResourceResponse:
        if not request.is_retrieval:
            logger.debug("interceptor.passthrough", method=request.method, url=request.url)
            return await self.fetcher.fetch(request)

        key = ResourceKey.for_request(request.method, request.url, origin=self.fetcher.origin)
        cached = await self._lookup(key)
        if cached is not None:
            logger.debug("interceptor.hit", version=self.table.version, url=key.url)
            return cached.to_response("cache")

        path_key = key.path_only
        if path_key is not None:
            cached = await self._lookup(path_key)
            if cached is not None:
                logger.debug("interceptor.path_hit", version=self.table.version, url=key.url)
                return cached.to_response("cache")

        logger.debug("interceptor.miss", version=self.table.version, url=key.url)
        try:
            response = await self.fetcher.fetch(request)
        except NetworkFailure as exc:
            if request.is_navigation:
                shell = await self._lookup(self.shell_key)
                if shell is not None:
                    logger.info("interceptor.offline_shell", url=key.url, error=exc.reason)
                    return shell.to_response("offline")
            logger.warning("interceptor.network_failed", url=key.url, error=exc.reason)
            raise

        if response.status == 200 and (key.is_relative or self.cache_cross_origin):
            self._write_through(key, response)
        return response

    async def _lookup(self, key: ResourceKey) -> Optional[CachedResource]:
        try:
            return await self.table.get(key)
        except CacheReadFailure as exc:
            logger.warning("cache.read_failed", version=exc.version, url=exc.url, error=exc.reason)
            return None

    def _write_through(self, key: ResourceKey, response: ResourceResponse) -> None:
        resource = CachedResource.from_response(response)
        task = asyncio.create_task(self._store(key, resource))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _store(self, key: ResourceKey, resource: CachedResource) -> None:
        try:
            await self.table.put(key, resource)
        except CacheWriteFailure as exc:
            logger.warning("cache.write_failed", version=exc.version, url=exc.url, error=exc.reason)
            return
        logger.debug("cache.written", version=self.table.version, url=key.url)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every write-through started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
