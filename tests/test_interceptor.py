import asyncio
from pathlib import Path

import httpx
import pytest

from pwa_cache.errors import NetworkFailure
from pwa_cache.http_client import ResourceFetcher
from pwa_cache.interceptor import RequestInterceptor
from pwa_cache.models import CachedResource, ResourceKey, ResourceRequest
from pwa_cache.storage import CacheStore

ORIGIN = "http://app.test"


async def build_interceptor(tmp_path: Path, server, **kwargs):
    store = CacheStore(tmp_path / "cache.db")
    table = await store.open("v1")
    return store, table, RequestInterceptor(table, server.fetcher(), **kwargs)


def get(url: str, *, navigation: bool = False) -> ResourceRequest:
    return ResourceRequest(method="GET", url=url, is_navigation=navigation)


def test_hit_is_served_without_network(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/app.js"),
            CachedResource(status=200, headers=(("Content-Type", "text/javascript"),), body=b"cached", url="/app.js"),
        )
        return await interceptor.handle(get("/app.js"))

    response = asyncio.run(scenario())

    assert response.source == "cache"
    assert response.body == b"cached"
    assert response.header("content-type") == "text/javascript"
    assert server.calls == []


def test_absolute_same_origin_url_hits_relative_entry(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/styles.css"),
            CachedResource(status=200, headers=(), body=b"body{}", url="/styles.css"),
        )
        return await interceptor.handle(get(f"{ORIGIN}/styles.css"))

    response = asyncio.run(scenario())

    assert response.body == b"body{}"
    assert server.calls == []


def test_miss_fetches_and_writes_through(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        first = await interceptor.handle(get("/manifest.json"))
        await interceptor.drain()
        second = await interceptor.handle(get("/manifest.json"))
        return first, second, await table.keys()

    first, second, keys = asyncio.run(scenario())

    assert first.source == "network"
    assert second.source == "cache"
    assert second.body == first.body == b"asset:/manifest.json"
    assert second.header("x-asset") == "/manifest.json"
    assert keys == [ResourceKey("GET", "/manifest.json")]
    assert server.calls == ["GET /manifest.json"]


def test_non_200_response_is_returned_but_not_cached(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        response = await interceptor.handle(get("/nope.png"))
        await interceptor.drain()
        return response, await table.keys()

    response, keys = asyncio.run(scenario())

    assert response.status == 404
    assert keys == []


def test_mutating_request_bypasses_cache(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/submit"),
            CachedResource(status=200, headers=(), body=b"cached form", url="/submit"),
        )
        response = await interceptor.handle(ResourceRequest(method="POST", url="/submit", body=b"x=1"))
        await interceptor.drain()
        return response, await table.keys()

    response, keys = asyncio.run(scenario())

    assert response.status == 201
    assert response.body == b"created:x=1"
    assert keys == [ResourceKey("GET", "/submit")]
    assert server.calls == ["POST /submit"]


def test_failed_navigation_returns_cached_shell(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/index.html"),
            CachedResource(status=200, headers=(("Content-Type", "text/html"),), body=b"<html>shell</html>", url="/index.html"),
        )
        server.online = False
        return await interceptor.handle(get("/reports/today", navigation=True))

    response = asyncio.run(scenario())

    assert response.source == "offline"
    assert response.status == 200
    assert response.body == b"<html>shell</html>"


def test_failed_subresource_propagates_network_failure(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/index.html"),
            CachedResource(status=200, headers=(), body=b"<html>shell</html>", url="/index.html"),
        )
        server.online = False
        await interceptor.handle(get("/data.json"))

    with pytest.raises(NetworkFailure):
        asyncio.run(scenario())


def test_failed_navigation_without_cached_shell_propagates(tmp_path: Path, server):
    async def scenario():
        _, _, interceptor = await build_interceptor(tmp_path, server)
        server.online = False
        await interceptor.handle(get("/", navigation=True))

    with pytest.raises(NetworkFailure):
        asyncio.run(scenario())


def test_cache_write_failure_still_returns_response(tmp_path: Path, server):
    async def scenario():
        store, table, interceptor = await build_interceptor(tmp_path, server)
        await store.delete(table)
        response = await interceptor.handle(get("/app.js"))
        await interceptor.drain()
        return response, interceptor.pending_writes

    response, pending = asyncio.run(scenario())

    assert response.status == 200
    assert response.body == b"asset:/app.js"
    assert pending == 0


def test_cross_origin_responses_are_not_stored_by_default(tmp_path: Path, server):
    async def scenario(**kwargs):
        _, table, interceptor = await build_interceptor(tmp_path / str(len(kwargs)), server, **kwargs)
        response = await interceptor.handle(get("https://cdn.example.com/lib.js"))
        await interceptor.drain()
        return response, await table.keys()

    default_response, default_keys = asyncio.run(scenario())
    _, opted_in_keys = asyncio.run(scenario(cache_cross_origin=True))

    assert default_response.body == b"remote:/lib.js"
    assert default_keys == []
    assert opted_in_keys == [ResourceKey("GET", "https://cdn.example.com/lib.js")]


def test_concurrent_misses_each_fetch_and_last_write_wins(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        responses = await asyncio.gather(
            interceptor.handle(get("/gong1.mp3")),
            interceptor.handle(get("/gong1.mp3")),
        )
        await interceptor.drain()
        return responses, await table.keys()

    responses, keys = asyncio.run(scenario())

    assert [response.status for response in responses] == [200, 200]
    assert server.calls.count("GET /gong1.mp3") == 2
    assert keys == [ResourceKey("GET", "/gong1.mp3")]


def test_scheme_less_host_stays_on_origin(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        response = await interceptor.handle(get("//evil.example/steal"))
        await interceptor.drain()
        return response, await table.keys()

    response, keys = asyncio.run(scenario())

    assert response.status == 404
    assert response.body == b"not found"
    assert server.calls == ["GET /evil.example/steal"]
    assert keys == []


def test_query_miss_falls_back_to_bare_path(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/app.js"),
            CachedResource(status=200, headers=(), body=b"cached", url="/app.js"),
        )
        server.online = False
        return await interceptor.handle(get("/app.js?v=2"))

    response = asyncio.run(scenario())

    assert response.source == "cache"
    assert response.body == b"cached"


def test_cross_origin_query_has_no_path_fallback(tmp_path: Path, server):
    async def scenario():
        _, table, interceptor = await build_interceptor(tmp_path, server)
        await table.put(
            ResourceKey.for_request("GET", "/lib.js"),
            CachedResource(status=200, headers=(), body=b"local", url="/lib.js"),
        )
        return await interceptor.handle(get("https://cdn.example.com/lib.js?v=2"))

    response = asyncio.run(scenario())

    assert response.source == "network"
    assert response.body == b"remote:/lib.js?v=2"


@pytest.mark.parametrize("error", [httpx.ReadTimeout, httpx.ConnectTimeout])
def test_timeouts_fall_back_like_offline(tmp_path: Path, error):
    def handler(request: httpx.Request) -> httpx.Response:
        raise error("timed out", request=request)

    async def scenario():
        store = CacheStore(tmp_path / "cache.db")
        table = await store.open("v1")
        await table.put(
            ResourceKey.for_request("GET", "/index.html"),
            CachedResource(status=200, headers=(), body=b"<html>shell</html>", url="/index.html"),
        )
        fetcher = ResourceFetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)), origin=ORIGIN)
        interceptor = RequestInterceptor(table, fetcher)
        page = await interceptor.handle(get("/reports/today", navigation=True))
        try:
            await interceptor.handle(get("/data.json"))
        except NetworkFailure as exc:
            return page, exc
        return page, None

    page, failure = asyncio.run(scenario())

    assert page.source == "offline"
    assert page.body == b"<html>shell</html>"
    assert failure is not None
    assert failure.url == "/data.json"
