from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return max(low, min(value, high))


def _env_float(name: str, default: float, *, low: float, high: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return max(low, min(value, high))


def _env_str(name: str) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or None


@dataclass(frozen=True)
class FusionSettings:
    """Runtime settings read from PFE_* environment variables."""

    max_workers: int
    enrichment_enabled: bool
    enrichment_timeout_s: float
    enrichment_url: Optional[str]
    enrichment_api_key: Optional[str]
    enrichment_daily_cap: int
    enrichment_cache_ttl_s: int
    history_limit: int
    address_tables_path: Optional[str]
    store_path: str

    @classmethod
    def from_env(cls) -> "FusionSettings":
        return cls(
            max_workers=_env_int("PFE_MAX_WORKERS", 4, low=1, high=64),
            enrichment_enabled=_env_bool("PFE_ENRICHMENT_ENABLED", True),
            enrichment_timeout_s=_env_float(
                "PFE_ENRICHMENT_TIMEOUT_S", 10.0, low=0.1, high=120.0
            ),
            enrichment_url=_env_str("PFE_ENRICHMENT_URL"),
            enrichment_api_key=_env_str("PFE_ENRICHMENT_API_KEY"),
            enrichment_daily_cap=_env_int(
                "PFE_ENRICHMENT_DAILY_CAP", 200, low=0, high=1_000_000
            ),
            enrichment_cache_ttl_s=_env_int(
                "PFE_ENRICHMENT_CACHE_TTL_S", 900, low=0, high=7 * 86400
            ),
            history_limit=_env_int("PFE_HISTORY_LIMIT", 10, low=1, high=1000),
            address_tables_path=_env_str("PFE_ADDRESS_TABLES"),
            store_path=_env_str("PFE_STORE_PATH") or "./canonical.sqlite",
        )


@lru_cache(maxsize=1)
def get_settings() -> FusionSettings:
    return FusionSettings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()
