"""Tests for syncserver.config."""

import os
from unittest import mock

import pytest

from syncserver.config import (
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_PORT,
    SyncConfig,
    parse_address,
)
from syncshared.discovery import DEFAULT_EXTENSIONS

_ENV_KEYS = [
    "FILE_SYNC_HOST",
    "FILE_SYNC_PORT",
    "FILE_SYNC_DEBOUNCE_MS",
    "FILE_SYNC_CACHE_TTL_MS",
    "FILE_SYNC_EXTENSIONS",
    "FILE_SYNC_MAX_ANCESTORS",
    "FILE_SYNC_IGNORE",
    "FILE_SYNC_RESTRICT_WRITES",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestDefaults:
    def test_defaults(self):
        config = SyncConfig()
        assert config.host == "localhost"
        assert config.port == DEFAULT_PORT
        assert config.debounce_seconds == DEFAULT_DEBOUNCE_MS / 1000.0
        assert config.cache_ttl_seconds == DEFAULT_CACHE_TTL_MS / 1000.0
        assert config.extensions == DEFAULT_EXTENSIONS
        assert config.max_ancestor_levels == 8
        assert config.ignore_patterns == []
        assert config.restrict_writes_to_watch_dir is True


class TestFromEnvironment:
    @mock.patch.dict(os.environ, {
        "FILE_SYNC_HOST": "0.0.0.0",
        "FILE_SYNC_PORT": "4000",
        "FILE_SYNC_DEBOUNCE_MS": "250",
        "FILE_SYNC_CACHE_TTL_MS": "0",
        "FILE_SYNC_EXTENSIONS": "ts, tsx ,.json",
        "FILE_SYNC_MAX_ANCESTORS": "3",
        "FILE_SYNC_IGNORE": "dist/, *.log",
        "FILE_SYNC_RESTRICT_WRITES": "false",
    })
    def test_all_variables(self):
        config = SyncConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 4000
        assert config.debounce_seconds == 0.25
        assert config.cache_ttl_seconds == 0.0
        assert config.extensions == (".ts", ".tsx", ".json")
        assert config.max_ancestor_levels == 3
        assert config.ignore_patterns == ["dist/", "*.log"]
        assert config.restrict_writes_to_watch_dir is False

    @mock.patch.dict(os.environ, {"FILE_SYNC_PORT": "not-a-port"})
    def test_bad_integer_names_variable(self):
        with pytest.raises(ValueError, match="FILE_SYNC_PORT"):
            SyncConfig()

    @mock.patch.dict(os.environ, {"FILE_SYNC_PORT": "4000"})
    def test_overrides_win_and_none_is_ignored(self):
        config = SyncConfig.from_env(port=5000, host=None)
        assert config.port == 5000
        assert config.host == "localhost"

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("0", False), ("No", False)])
    def test_restrict_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("FILE_SYNC_RESTRICT_WRITES", raw)
        assert SyncConfig().restrict_writes_to_watch_dir is expected


class TestValidation:
    @pytest.mark.parametrize("kwargs", [
        {"port": -1},
        {"port": 70000},
        {"debounce_seconds": -0.1},
        {"cache_ttl_seconds": -1},
        {"max_ancestor_levels": 0},
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SyncConfig(**kwargs)

    def test_port_zero_allowed(self):
        assert SyncConfig(port=0).port == 0


class TestParseAddress:
    def test_none_uses_defaults(self):
        assert parse_address(None, "localhost", 3001) == ("localhost", 3001)

    def test_port_only(self):
        assert parse_address(":4000", "localhost", 3001) == ("0.0.0.0", 4000)
        assert parse_address("4000", "localhost", 3001) == ("0.0.0.0", 4000)

    def test_host_and_port(self):
        assert parse_address("127.0.0.1:4000", "localhost", 3001) == ("127.0.0.1", 4000)
