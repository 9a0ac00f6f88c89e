"""Tests for cluster configuration resolution."""

import logging

import pytest
from pydantic import ValidationError

from searchwire.auth import BasicAuth, NoAuth
from searchwire.config import ClusterConfig, resolve_config
from searchwire.errors import ConfigError

URL = "http://localhost:9200"


def test_defaults():
    config = resolve_config({"url": URL})

    assert config.url == URL
    assert config.name == "default"
    assert config.username is None
    assert config.password is None
    assert isinstance(config.auth, BasicAuth)
    assert config.pool_size == 5
    assert config.pool_timeout == 5.0
    assert dict(config.conn_opts) == {}
    assert config.telemetry_prefix == ("default", "searchwire")


@pytest.mark.parametrize("raw", [{}, {"url": None}, {"url": ""}, {"username": "u"}])
def test_url_is_required(raw):
    with pytest.raises(ConfigError, match="'url' is required"):
        resolve_config(raw)


@pytest.mark.parametrize("url", ["localhost:9200", "ftp://localhost", "http://", "not a url"])
def test_url_must_be_http(url):
    with pytest.raises(ConfigError):
        resolve_config({"url": url})


@pytest.mark.parametrize("pool_size,expected", [(None, 5), (0, 5), (-3, 5), (1, 1), (20, 20), ("3", 3)])
def test_pool_size(pool_size, expected):
    assert resolve_config({"url": URL, "pool_size": pool_size}).pool_size == expected


@pytest.mark.parametrize("pool_timeout,expected", [(None, 5.0), (0, 5.0), (-1, 5.0), (0.25, 0.25)])
def test_pool_timeout(pool_timeout, expected):
    assert resolve_config({"url": URL, "pool_timeout": pool_timeout}).pool_timeout == expected


def test_telemetry_prefix_derived_from_name():
    assert resolve_config({"url": URL}, name="products").telemetry_prefix == ("products", "searchwire")


@pytest.mark.parametrize("prefix,expected", [
    ("my_app.search", ("my_app", "search")),
    (("my_app", "es"), ("my_app", "es")),
    (["a"], ("a",)),
])
def test_telemetry_prefix(prefix, expected):
    assert resolve_config({"url": URL, "telemetry_prefix": prefix}).telemetry_prefix == expected


def test_auth_selection():
    assert isinstance(resolve_config({"url": URL, "auth": "none"}).auth, NoAuth)

    with pytest.raises(ConfigError, match="unknown auth strategy"):
        resolve_config({"url": URL, "auth": "digest"})


def test_url_parts():
    config = resolve_config({"url": "https://es.example.com/search/"})

    assert config.url == "https://es.example.com/search"
    assert config.scheme == "https"
    assert config.host == "es.example.com"
    assert config.port == 443
    assert config.path_prefix == "/search"

    config = resolve_config({"url": "http://10.0.0.5:9201"})
    assert (config.host, config.port, config.path_prefix) == ("10.0.0.5", 9201, "")


def test_unknown_keys_ignored(caplog):
    with caplog.at_level(logging.DEBUG, logger="searchwire.config"):
        config = resolve_config({"url": URL, "poolsize": 3, "app_region": "eu"})

    assert config.pool_size == 5
    assert not hasattr(config, "poolsize")
    assert "app_region, poolsize" in caplog.text


def test_config_is_immutable():
    config = resolve_config({"url": URL, "conn_opts": {"request_timeout": 3}})

    with pytest.raises(ValidationError):
        config.pool_size = 10
    with pytest.raises(TypeError):
        config.conn_opts["request_timeout"] = 30
    assert config.conn_opts["request_timeout"] == 3


def test_conn_opts_copied_from_caller():
    opts = {"http_compress": True}
    config = resolve_config({"url": URL, "conn_opts": opts})
    opts["http_compress"] = False
    assert config.conn_opts["http_compress"] is True


def test_password_hidden_from_repr():
    config = resolve_config({"url": URL, "username": "u", "password": "hunter2"})
    assert "hunter2" not in repr(config)


def test_environment_fills_missing_settings(monkeypatch):
    monkeypatch.setenv("MYAPP_SEARCH_URL", "http://search.internal:9200")
    monkeypatch.setenv("MYAPP_SEARCH_USERNAME", "svc")
    monkeypatch.setenv("MYAPP_SEARCH_POOL_SIZE", "7")

    config = resolve_config({"password": "p"}, env_prefix="MYAPP_SEARCH_")

    assert config.url == "http://search.internal:9200"
    assert config.username == "svc"
    assert config.password == "p"
    assert config.pool_size == 7


def test_static_config_overrides_environment(monkeypatch):
    monkeypatch.setenv("MYAPP_SEARCH_URL", "http://search.internal:9200")
    config = resolve_config({"url": URL}, env_prefix="MYAPP_SEARCH_")
    assert config.url == URL


def test_environment_ignored_without_prefix(monkeypatch):
    monkeypatch.setenv("URL", "http://from-env:9200")
    with pytest.raises(ConfigError):
        resolve_config({})


def test_invalid_environment(monkeypatch):
    monkeypatch.setenv("MYAPP_SEARCH_POOL_SIZE", "lots")
    with pytest.raises(ConfigError):
        resolve_config({"url": URL}, env_prefix="MYAPP_SEARCH_")


def test_cluster_config_direct_construction():
    config = ClusterConfig(url=URL, name="logs")
    assert config.telemetry_prefix == ("logs", "searchwire")
    assert isinstance(config.auth, BasicAuth)
