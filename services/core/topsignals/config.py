from datetime import datetime, timezone
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# Get the directory where this config.py file is located
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"  # services/core/.env


def _date_to_ms(value: str) -> int:
    dt = datetime.strptime(value.strip(), "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Storage
    sqlite_path: str = "data/signals.db"

    # Provider keys (a missing key only disables the strategy that needs it)
    searchapi_key: str | None = None
    cryptocompare_api_key: str | None = None
    coingecko_api_key: str | None = None  # demo key, sent as x-cg-demo-api-key

    # Provider endpoints
    binance_base_url: str = "https://data-api.binance.vision"  # mirror, no geo-blocking
    cryptocompare_base_url: str = "https://min-api.cryptocompare.com"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    searchapi_base_url: str = "https://www.searchapi.io/api/v1/search"
    appstore_base_url: str = "https://itunes.apple.com"

    # Tracked app
    app_store_id: str = "886427730"
    app_bundle_id: str = "com.coinbase.app"
    app_name_hint: str = "coinbase"
    app_store_country: str = "us"

    # Fetch policy
    fetch_max_retries: int = 2
    fetch_backoff_ms: int = 100
    fetch_deadline_seconds: float = 20.0  # overall budget per logical fetch, retries included
    request_timeout_seconds: float = 10.0  # per HTTP attempt
    page_pacing_seconds: float = 0.1
    source_timeout_seconds: float = 60.0  # per strategy in a fallback chain

    # History collection
    history_desired_earliest: str = "2013-01-01"
    binance_history_start: str = "2017-08-01"
    history_max_records: int = 10000
    history_max_pages: int = 20
    cryptocompare_max_pages: int = 5

    # Result cache TTLs (seconds)
    rank_ttl_seconds: int = 300
    history_ttl_seconds: int = 86400
    indicators_ttl_seconds: int = 14400
    pi_cycle_ttl_seconds: int = 86400
    degraded_ttl_seconds: int = 300
    stale_grace_seconds: int = 86400

    def get_desired_earliest_ms(self) -> int:
        """Earliest candle the merged history should ideally reach."""
        return _date_to_ms(self.history_desired_earliest)

    def get_binance_start_ms(self) -> int:
        """First day Binance has daily BTCUSDT candles for."""
        return _date_to_ms(self.binance_history_start)


def get_settings() -> Settings:
    return Settings()
