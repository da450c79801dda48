"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceSettings(BaseSettings):
    """Node API connection settings for the trade source and name lookups."""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")

    base_url: str = "http://localhost:12391"
    page_size: int = 100  # records per /crosschain/trades page
    request_timeout: float = 30.0  # seconds


class CacheSettings(BaseSettings):
    """Persistent trade cache configuration."""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    db_path: str = "data/trade_cache.db"
    key: str = "QORT_CANDLE_TRADES"
    version: int = 1  # bump to discard every existing cache on next load
    stale_after_days: int = 7


class FilterSettings(BaseSettings):
    """Default outlier filter applied before charting.

    Callers can override any of these per request; these are only the
    defaults the pipeline falls back to.
    """

    model_config = SettingsConfigDict(env_prefix="FILTER_")

    policy: Literal["percentile", "weighted_average", "none"] = "percentile"
    lower_quantile: float = 0.01
    upper_quantile: float = 0.99
    min_samples: int = 200  # below this many priced trades, percentile clipping is skipped
    tolerance: float = 0.5  # weighted-average band: mean/(1+t) .. mean*(1+t)


class NameSettings(BaseSettings):
    """Display-name resolution settings."""

    model_config = SettingsConfigDict(env_prefix="NAMES_")

    batch_size: int = 25
    lookup_limit: int = 1
    auto_resolve: bool = True  # resolve counterparties after every completed fetch


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "127.0.0.1"
    port: int = 8080
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"  # LOG_FORMAT
    pairs: list[str] = [
        "BITCOIN",
        "LITECOIN",
        "DOGECOIN",
        "DIGIBYTE",
        "RAVENCOIN",
        "PIRATECHAIN",
    ]
    source: SourceSettings = SourceSettings()
    cache: CacheSettings = CacheSettings()
    filter: FilterSettings = FilterSettings()
    names: NameSettings = NameSettings()
    api: ApiSettings = ApiSettings()
