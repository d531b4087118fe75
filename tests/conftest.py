from __future__ import annotations

from typing import Dict, List, Set

import httpx
import pytest

from pwa_cache.config import DEFAULT_MANIFEST
from pwa_cache.http_client import ResourceFetcher

ORIGIN = "http://app.test"


class AssetServer:
    """Fake upstream origin serving every manifest entry plus a few extras."""

    def __init__(self) -> None:
        self.assets: Dict[str, bytes] = {path: f"asset:{path}".encode() for path in DEFAULT_MANIFEST}
        self.assets["/index.html"] = b"<html>shell</html>"
        self.missing: Set[str] = set()
        self.unreachable: Set[str] = set()
        self.online = True
        self.calls: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.raw_path.decode()
        self.calls.append(f"{request.method} {path}")
        if not self.online or request.url.path in self.unreachable:
            raise httpx.ConnectError("network unreachable", request=request)
        if request.method != "GET":
            return httpx.Response(201, text=f"created:{request.content.decode()}")
        if request.url.host != "app.test":
            return httpx.Response(200, text=f"remote:{path}")
        if request.url.path in self.missing or request.url.path not in self.assets:
            return httpx.Response(404, text="not found")
        content_type = "text/html" if request.url.path.endswith((".html", "/")) else "application/octet-stream"
        return httpx.Response(
            200,
            content=self.assets[request.url.path],
            headers={"Content-Type": content_type, "X-Asset": request.url.path},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def fetcher(self) -> ResourceFetcher:
        return ResourceFetcher(self.client(), origin=ORIGIN)


@pytest.fixture
def server() -> AssetServer:
    return AssetServer()
