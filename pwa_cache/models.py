from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidSchedule

RETRIEVAL_METHODS = frozenset({"GET"})

Headers = Tuple[Tuple[str, str], ...]


def is_retrieval(method: str) -> bool:
    return method.upper() in RETRIEVAL_METHODS


def _same_origin(scheme: str, netloc: str, origin: Optional[str]) -> bool:
    if not origin:
        return False
    parts = urlsplit(origin)
    return scheme.lower() == parts.scheme.lower() and netloc.lower() == parts.netloc.lower()


def origin_path(url: str) -> str:
    """Collapse the leading slashes of a scheme-less URL into one."""
    if url.startswith("//"):
        return "/" + url.lstrip("/")
    return url


def normalize_url(url: str, origin: Optional[str] = None) -> str:
    """Reduce ``url`` to the form used as a cache key.

    Relative URLs and absolute URLs on ``origin`` collapse to ``/path?query``
    so both spellings of a same-origin resource share one entry. Other
    absolute URLs are kept whole. Fragments never reach the key. A
    scheme-less ``//host/x`` is a path on ``origin``, not another host.
    """
    parts = urlsplit(origin_path(url))
    if not parts.scheme and not parts.netloc:
        path = parts.path if parts.path.startswith("/") else "/" + parts.path
        return urlunsplit(("", "", path, parts.query, ""))
    if _same_origin(parts.scheme, parts.netloc, origin):
        return urlunsplit(("", "", parts.path or "/", parts.query, ""))
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, ""))


@dataclass(frozen=True)
class ResourceKey:
    """Normalized identity of a retrieval request: method plus URL."""

    method: str
    url: str

    @classmethod
    def for_request(cls, method: str, url: str, *, origin: Optional[str] = None) -> "ResourceKey":
        method = method.upper()
        if method not in RETRIEVAL_METHODS:
            raise ValueError(f"{method} requests cannot be cached")
        return cls(method=method, url=normalize_url(url, origin))

    @property
    def is_relative(self) -> bool:
        return self.url.startswith("/") and not self.url.startswith("//")

    @property
    def path_only(self) -> Optional["ResourceKey"]:
        """Same-origin key without its query string, or None when there is none."""
        if not self.is_relative or "?" not in self.url:
            return None
        return ResourceKey(self.method, self.url.split("?", 1)[0])

    def __str__(self) -> str:
        return f"{self.method} {self.url}"


@dataclass(frozen=True)
class ResourceRequest:
    method: str
    url: str
    headers: Headers = ()
    body: bytes = b""
    is_navigation: bool = False

    @property
    def is_retrieval(self) -> bool:
        return is_retrieval(self.method)


@dataclass
class ResourceResponse:
    """Response handed back to the host runtime.

    ``source`` records how it was produced: ``cache``, ``network`` or
    ``offline`` (the shell document substituted for a failed navigation).
    """

    status: int
    headers: Headers
    body: bytes
    url: str
    source: str = "network"

    def header(self, name: str) -> Optional[str]:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None


@dataclass(frozen=True)
class CachedResource:
    """Immutable snapshot of a successful retrieval."""

    status: int
    headers: Headers
    body: bytes
    url: str
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_response(cls, response: ResourceResponse) -> "CachedResource":
        return cls(
            status=response.status,
            headers=tuple(response.headers),
            body=bytes(response.body),
            url=response.url,
        )

    def to_response(self, source: str = "cache") -> ResourceResponse:
        return ResourceResponse(
            status=self.status,
            headers=self.headers,
            body=self.body,
            url=self.url,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "headers": [list(pair) for pair in self.headers],
            "url": self.url,
            "cached_at": self.cached_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], body: bytes) -> "CachedResource":
        cached_at = data.get("cached_at")
        if isinstance(cached_at, str):
            cached_at_value = datetime.fromisoformat(cached_at)
        elif isinstance(cached_at, datetime):
            cached_at_value = cached_at
        else:
            raise TypeError("cached_at must be a datetime or ISO-8601 string")

        return cls(
            status=int(data["status"]),
            headers=tuple((str(k), str(v)) for k, v in data.get("headers", [])),
            body=body,
            url=data["url"],
            cached_at=cached_at_value,
        )


class LifecycleState(str, Enum):
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


@dataclass
class PrecacheResult:
    key: ResourceKey
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None


_SCHEDULE_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class AlertSchedule:
    """Daily wall-clock time, persisted as ``HH:MM``."""

    hour: int
    minute: int

    @classmethod
    def parse(cls, value: str) -> "AlertSchedule":
        match = _SCHEDULE_RE.match((value or "").strip())
        if not match:
            raise InvalidSchedule(f"expected HH:MM, got {value!r}")
        return cls(hour=int(match.group(1)), minute=int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"
