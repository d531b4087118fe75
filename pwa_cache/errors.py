"""Failure taxonomy of the cache engine.

Only ``StoreOpenFailure`` is fatal, and only to the install of the version
that raised it. Everything else degrades to "serve from network" or "serve
the cached shell".
"""

from __future__ import annotations

from typing import Optional


class CacheEngineError(Exception):
    """Base class for every error raised by the cache engine."""


class StoreOpenFailure(CacheEngineError):
    """The cache database or a version's table could not be created/opened."""

    def __init__(self, version: str, reason: str) -> None:
        super().__init__(f"cannot open cache store for version {version!r}: {reason}")
        self.version = version
        self.reason = reason


class CacheWriteFailure(CacheEngineError):
    """A write-through ``put`` failed after a successful network fetch."""

    def __init__(self, version: str, url: str, reason: str) -> None:
        super().__init__(f"cannot write {url!r} into cache version {version!r}: {reason}")
        self.version = version
        self.url = url
        self.reason = reason


class NetworkFailure(CacheEngineError):
    """The network could not produce a response (connectivity, DNS, timeout)."""

    def __init__(self, url: str, reason: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"network request for {url!r} failed: {reason}")
        self.url = url
        self.reason = reason
        self.cause = cause


class PrecacheEntryFailure(CacheEngineError):
    """A manifest entry could not be precached.

    Raised only when the strict precache policy is enabled; otherwise the
    failure is recorded on the entry's ``PrecacheResult``.
    """

    def __init__(self, version: str, failed: list[str]) -> None:
        super().__init__(
            f"precache of version {version!r} failed for {len(failed)} entries: {', '.join(failed)}"
        )
        self.version = version
        self.failed = failed


class InvalidSchedule(ValueError):
    """A schedule string is not a valid ``HH:MM`` wall-clock time."""


class CacheReadFailure(CacheEngineError):
    """A lookup in a cache version failed; callers treat it as a miss."""

    def __init__(self, version: str, url: str, reason: str) -> None:
        super().__init__(f"cannot read {url!r} from cache version {version!r}: {reason}")
        self.version = version
        self.url = url
        self.reason = reason
