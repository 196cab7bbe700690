from property_fusion.config import FusionSettings, get_settings, reset_settings_cache


def _settings(monkeypatch, **env):
    for k, v in env.items():
        if v is None:
            monkeypatch.delenv(k, raising=False)
        else:
            monkeypatch.setenv(k, str(v))
    reset_settings_cache()
    return get_settings()


def test_defaults():
    settings = get_settings()
    assert settings == FusionSettings(
        max_workers=4,
        enrichment_enabled=True,
        enrichment_timeout_s=10.0,
        enrichment_url=None,
        enrichment_api_key=None,
        enrichment_daily_cap=200,
        enrichment_cache_ttl_s=900,
        history_limit=10,
        address_tables_path=None,
        store_path="./canonical.sqlite",
    )


def test_env_overrides(monkeypatch):
    settings = _settings(
        monkeypatch,
        PFE_MAX_WORKERS="8",
        PFE_ENRICHMENT_ENABLED="off",
        PFE_ENRICHMENT_TIMEOUT_S="2.5",
        PFE_HISTORY_LIMIT="3",
        PFE_STORE_PATH="/tmp/x.sqlite",
    )
    assert settings.max_workers == 8
    assert settings.enrichment_enabled is False
    assert settings.enrichment_timeout_s == 2.5
    assert settings.history_limit == 3
    assert settings.store_path == "/tmp/x.sqlite"


def test_values_are_clamped_or_defaulted(monkeypatch):
    settings = _settings(
        monkeypatch,
        PFE_MAX_WORKERS="500",
        PFE_ENRICHMENT_ENABLED="maybe",
        PFE_ENRICHMENT_DAILY_CAP="lots",
        PFE_ENRICHMENT_URL="   ",
    )
    assert settings.max_workers == 64
    assert settings.enrichment_enabled is True
    assert settings.enrichment_daily_cap == 200
    assert settings.enrichment_url is None


def test_settings_are_cached_until_reset(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("PFE_MAX_WORKERS", "2")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().max_workers == 2
