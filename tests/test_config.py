from pathlib import Path

from pwa_cache.config import DEFAULT_MANIFEST, load_config


def test_defaults_come_from_packaged_yaml():
    config = load_config(env={})

    assert config.cache.version == "v6"
    assert config.cache.shell_document == "/index.html"
    assert config.cache.skip_waiting is True
    assert config.cache.manifest == DEFAULT_MANIFEST
    assert config.network.timeout == 10.0
    assert config.schedule.enabled is True
    assert config.logging.json is True


def test_yaml_file_overrides_defaults(tmp_path: Path):
    override = tmp_path / "pwa.yaml"
    override.write_text(
        "cache:\n"
        "  version: 7\n"
        "  manifest: [/index.html, /app.js]\n"
        "network:\n"
        "  origin: https://static.example.com\n"
    )

    config = load_config(config_path=str(override), env={})

    assert config.cache.version == "7"
    assert config.cache.manifest == ["/index.html", "/app.js"]
    assert config.cache.db_path == "data/cache.db"
    assert config.network.origin == "https://static.example.com"
    assert config.network.timeout == 10.0


def test_environment_overrides_win(tmp_path: Path):
    env = {
        "PWA_CACHE_VERSION": "v9",
        "PWA_CACHE_DB_PATH": str(tmp_path / "other.db"),
        "PWA_CACHE_SKIP_WAITING": "no",
        "PWA_CACHE_CROSS_ORIGIN": "yes",
        "PWA_CACHE_STRICT_PRECACHE": "1",
        "PWA_CACHE_ORIGIN": "http://upstream:3000",
        "PWA_CACHE_FETCH_TIMEOUT": "2.5",
        "PWA_CACHE_FETCH_ATTEMPTS": "3",
        "PWA_CACHE_SCHEDULE_ENABLED": "off",
        "PWA_CACHE_LOG_LEVEL": "debug",
        "PWA_CACHE_LOG_JSON": "false",
    }

    config = load_config(env=env)

    assert config.cache.version == "v9"
    assert config.cache.db_path == str(tmp_path / "other.db")
    assert config.cache.skip_waiting is False
    assert config.cache.cache_cross_origin is True
    assert config.cache.fail_on_precache_error is True
    assert config.network.origin == "http://upstream:3000"
    assert config.network.timeout == 2.5
    assert config.network.max_attempts == 3
    assert config.schedule.enabled is False
    assert config.logging.level == "debug"
    assert config.logging.json is False


def test_malformed_numeric_overrides_are_ignored():
    config = load_config(env={"PWA_CACHE_FETCH_TIMEOUT": "soon", "PWA_CACHE_FETCH_ATTEMPTS": "many"})

    assert config.network.timeout == 10.0
    assert config.network.max_attempts == 1
