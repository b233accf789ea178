from __future__ import annotations

from portal.common import config as config_mod
from portal.common.config import DEFAULT_REQUIRED_CATEGORIES, DEFAULT_WEIGHTS


def test_defaults_when_environment_is_empty():
    cfg = config_mod.get_config()
    assert cfg.app_url == "http://localhost:3000"
    assert cfg.platform_fee_percentage == 10.0
    assert cfg.free_tier_pack_limit == 3
    assert cfg.max_document_bytes == 1024 * 1024
    assert cfg.pack_health.required_categories == DEFAULT_REQUIRED_CATEGORIES
    assert dict(cfg.pack_health.weights) == dict(DEFAULT_WEIGHTS)
    assert cfg.pack_health.expiration_warning_days == 30


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("APP_URL", "https://portal.example.com/")
    monkeypatch.setenv("PLATFORM_FEE_PERCENTAGE", "12.5")
    monkeypatch.setenv("PACK_HEALTH_REQUIRED_CATEGORIES", "Financial, Safety ,")
    monkeypatch.setenv("PACK_HEALTH_WEIGHTS", '{"completeness": 1, "bogus": 5}')

    cfg = config_mod.from_env()
    assert cfg.app_url == "https://portal.example.com"
    assert cfg.platform_fee_percentage == 12.5
    assert cfg.pack_health.required_categories == ("Financial", "Safety")
    assert dict(cfg.pack_health.weights) == {
        "completeness": 1.0,
        "expiration": 0.0,
        "quality": 0.0,
        "remediation": 0.0,
    }


def test_unparseable_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("FREE_TIER_PACK_LIMIT", "lots")
    monkeypatch.setenv("PACK_HEALTH_WEIGHTS", "[1, 2]")
    monkeypatch.setenv("PACK_HEALTH_REQUIRED_CATEGORIES", " , ")

    cfg = config_mod.from_env()
    assert cfg.free_tier_pack_limit == 3
    assert dict(cfg.pack_health.weights) == dict(DEFAULT_WEIGHTS)
    assert cfg.pack_health.required_categories == DEFAULT_REQUIRED_CATEGORIES


def test_non_finite_weights_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("PACK_HEALTH_WEIGHTS", '{"completeness": 1e999, "expiration": 0.3}')
    assert dict(config_mod.from_env().pack_health.weights) == dict(DEFAULT_WEIGHTS)


def test_out_of_range_warning_days_fall_back_to_default(monkeypatch):
    for raw in ("1000000000", "-3"):
        monkeypatch.setenv("PACK_HEALTH_EXPIRATION_WARNING_DAYS", raw)
        assert config_mod.from_env().pack_health.expiration_warning_days == 30

    monkeypatch.setenv("PACK_HEALTH_EXPIRATION_WARNING_DAYS", "90")
    assert config_mod.from_env().pack_health.expiration_warning_days == 90
