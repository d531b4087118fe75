"""Offline resource cache engine for a Progressive Web App shell."""

from .engine import CacheEngine
from .http_client import ResourceFetcher
from .interceptor import RequestInterceptor
from .lifecycle import LifecycleController
from .models import CachedResource, LifecycleState, ResourceKey, ResourceRequest, ResourceResponse
from .storage import CacheStore, PreferenceStore, ResourceTable

__all__ = [
    "CacheEngine",
    "CacheStore",
    "CachedResource",
    "LifecycleController",
    "LifecycleState",
    "PreferenceStore",
    "RequestInterceptor",
    "ResourceFetcher",
    "ResourceKey",
    "ResourceRequest",
    "ResourceResponse",
    "ResourceTable",
]
