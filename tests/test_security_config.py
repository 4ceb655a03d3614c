import importlib
import sys

import pytest


def reload_config_module():
    config_module = sys.modules.get("sprout_sync.config")
    if config_module:
        config_module.get_settings.cache_clear()
        sys.modules.pop("sprout_sync.config", None)
    return importlib.import_module("sprout_sync.config")


def test_plain_http_api_url_fails_closed(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "http://api.getsprout.io")

    config_module = reload_config_module()

    with pytest.raises(Exception, match="https"):
        config_module.get_settings()


def test_relative_api_url_fails_closed(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "/v1")

    config_module = reload_config_module()

    with pytest.raises(Exception, match="absolute http"):
        config_module.get_settings()


def test_plain_http_allowed_for_localhost(monkeypatch):
    monkeypatch.setenv("API_BASE_URL", "http://localhost:3000/")

    config_module = reload_config_module()
    settings = config_module.get_settings()

    assert settings.api_base_url == "http://localhost:3000"


def test_defaults_point_at_production_api(monkeypatch):
    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.delenv("SYNC_PAGE_SIZE", raising=False)

    config_module = reload_config_module()
    settings = config_module.get_settings()

    assert settings.api_base_url == "https://api.getsprout.io"
    assert settings.sync_page_size == 50
    assert settings.max_run_attempts == 3


@pytest.mark.parametrize("page_size", ["0", "101"])
def test_page_size_outside_endpoint_limits_fails(monkeypatch, page_size):
    monkeypatch.setenv("SYNC_PAGE_SIZE", page_size)

    config_module = reload_config_module()

    with pytest.raises(Exception, match="SYNC_PAGE_SIZE"):
        config_module.get_settings()


@pytest.mark.parametrize("variable", ["SYNC_INTERVAL_MINUTES", "OFFLINE_RETRY_SECONDS"])
def test_non_positive_interval_fails(monkeypatch, variable):
    monkeypatch.setenv(variable, "0")

    config_module = reload_config_module()

    with pytest.raises(Exception, match="greater than zero"):
        config_module.get_settings()


def test_settings_are_cached(monkeypatch):
    monkeypatch.setenv("MAX_RECORD_REJECTIONS", "5")

    config_module = reload_config_module()

    assert config_module.get_settings() is config_module.get_settings()
    assert config_module.get_settings().max_record_rejections == 5
