from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"
load_dotenv()

ICON_SIZES = (72, 96, 128, 144, 152, 167, 180, 192, 384, 512)

DEFAULT_MANIFEST: List[str] = [
    "/",
    "/index.html",
    "/styles.css",
    "/app.js",
    "/manifest.json",
    *[f"/icons/icon-{size}.png" for size in ICON_SIZES],
    "/gong1.mp3",
]


def _bool_from_env(value: str | None) -> Optional[bool]:
    if value is None:
        return None
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return None


def _merge_dicts(base: Dict, overrides: Mapping) -> Dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), Mapping):
            merged[key] = _merge_dicts(base[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict:
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text()) or {}


@dataclass
class CacheConfig:
    version: str = "v6"
    db_path: str = "data/cache.db"
    manifest: List[str] = field(default_factory=lambda: list(DEFAULT_MANIFEST))
    shell_document: str = "/index.html"
    skip_waiting: bool = True
    cache_cross_origin: bool = False
    fail_on_precache_error: bool = False


@dataclass
class NetworkConfig:
    origin: str = "http://localhost:8080"
    timeout: float = 10.0
    max_attempts: int = 1
    backoff_factor: float = 0.5


@dataclass
class ScheduleConfig:
    enabled: bool = True


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = True


@dataclass
class AppConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(*, config_path: str | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    env = dict(os.environ if env is None else env)
    data = _load_yaml(_DEFAULT_CONFIG_PATH)

    explicit_path = config_path or env.get("PWA_CACHE_CONFIG_PATH")
    if explicit_path:
        data = _merge_dicts(data, _load_yaml(Path(explicit_path)))

    cache_data = dict(data.get("cache") or {})
    for env_key, field_name in (
        ("PWA_CACHE_VERSION", "version"),
        ("PWA_CACHE_DB_PATH", "db_path"),
        ("PWA_CACHE_SHELL_DOCUMENT", "shell_document"),
    ):
        if env.get(env_key):
            cache_data[field_name] = env[env_key]
    for env_key, field_name in (
        ("PWA_CACHE_SKIP_WAITING", "skip_waiting"),
        ("PWA_CACHE_CROSS_ORIGIN", "cache_cross_origin"),
        ("PWA_CACHE_STRICT_PRECACHE", "fail_on_precache_error"),
    ):
        flag = _bool_from_env(env.get(env_key))
        if flag is not None:
            cache_data[field_name] = flag
    if cache_data.get("version") is not None:
        cache_data["version"] = str(cache_data["version"])

    network_data = dict(data.get("network") or {})
    origin_override = env.get("PWA_CACHE_ORIGIN")
    if origin_override:
        network_data["origin"] = origin_override
    timeout_override = env.get("PWA_CACHE_FETCH_TIMEOUT")
    if timeout_override:
        try:
            network_data["timeout"] = float(timeout_override)
        except ValueError:
            pass
    attempts_override = env.get("PWA_CACHE_FETCH_ATTEMPTS")
    if attempts_override:
        try:
            network_data["max_attempts"] = max(1, int(attempts_override))
        except ValueError:
            pass

    schedule_data = dict(data.get("schedule") or {})
    enabled_override = _bool_from_env(env.get("PWA_CACHE_SCHEDULE_ENABLED"))
    if enabled_override is not None:
        schedule_data["enabled"] = enabled_override

    logging_data = dict(data.get("logging") or {})
    level_override = env.get("PWA_CACHE_LOG_LEVEL")
    if level_override:
        logging_data["level"] = level_override
    json_override = _bool_from_env(env.get("PWA_CACHE_LOG_JSON"))
    if json_override is not None:
        logging_data["json"] = json_override

    return AppConfig(
        cache=CacheConfig(**cache_data) if cache_data else CacheConfig(),
        network=NetworkConfig(**network_data) if network_data else NetworkConfig(),
        schedule=ScheduleConfig(**schedule_data) if schedule_data else ScheduleConfig(),
        logging=LoggingConfig(**logging_data) if logging_data else LoggingConfig(),
    )


app_config = load_config()
