from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urljoin, urlsplit

import httpx

from .config import NetworkConfig
from .errors import NetworkFailure
from .logging import get_logger
from .models import ResourceRequest, ResourceResponse, origin_path

logger = get_logger(__name__)


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; pwa-cache/1.0)"

# httpx hands back decoded bodies, so framing headers from upstream no longer apply.
_DROPPED_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "keep-alive",
        "transfer-encoding",
    }
)
_DROPPED_REQUEST_HEADERS = frozenset({"host", "content-length", "connection"})


class ResourceFetcher:
    """Async HTTP client wrapper with a bounded timeout and retry/backoff."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        origin: str = "http://localhost:8080",
        timeout: float = 10.0,
        max_attempts: int = 1,
        backoff_factor: float = 0.5,
    ) -> None:
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": DEFAULT_USER_AGENT},
        )
        self.origin = origin
        self.max_attempts = max(1, max_attempts)
        self.backoff_factor = backoff_factor

    @classmethod
    def from_config(
        cls, config: NetworkConfig, *, client: Optional[httpx.AsyncClient] = None
    ) -> "ResourceFetcher":
        return cls(
            client,
            origin=config.origin,
            timeout=config.timeout,
            max_attempts=config.max_attempts,
            backoff_factor=config.backoff_factor,
        )

    def resolve(self, url: str) -> str:
        """Absolute URLs pass through; anything else is a path on the origin."""
        if urlsplit(url).scheme:
            return url
        return urljoin(self.origin.rstrip("/") + "/", origin_path(url))

    async def fetch(self, request: ResourceRequest) -> ResourceResponse:
        url = self.resolve(request.url)
        headers = {
            name: value
            for name, value in request.headers
            if name.lower() not in _DROPPED_REQUEST_HEADERS
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.debug("http.fetch", method=request.method, url=url, attempt=attempt)
                response = await self.client.request(
                    request.method,
                    url,
                    headers=headers,
                    content=request.body or None,
                )
                return self._to_resource_response(request, response)
            except httpx.RequestError as exc:
                last_error = exc
                logger.warning(
                    "http.fetch.retry",
                    method=request.method,
                    url=url,
                    attempt=attempt,
                    error=str(exc) or exc.__class__.__name__,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_factor * (2 ** (attempt - 1)))
        reason = "unknown"
        if last_error is not None:
            reason = str(last_error) or last_error.__class__.__name__
        raise NetworkFailure(request.url, reason, cause=last_error)

    async def get(self, url: str) -> ResourceResponse:
        return await self.fetch(ResourceRequest(method="GET", url=url))

    @staticmethod
    def _to_resource_response(request: ResourceRequest, response: httpx.Response) -> ResourceResponse:
        headers = tuple(
            (name, value)
            for name, value in response.headers.items()
            if name.lower() not in _DROPPED_HEADERS
        )
        return ResourceResponse(
            status=response.status_code,
            headers=headers,
            body=response.content,
            url=request.url,
            source="network",
        )

    async def close(self) -> None:
        await self.client.aclose()
