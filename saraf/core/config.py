from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, RATES_CACHE_TTL_SECONDS, CURRENCYLAYER_KEY, FEE_PERCENT).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Saraf Exchange Core"
    debug: bool = False
    version: str = "0.1.0"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "saraf.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided
    # 'sqlite' (durable) or 'memory' (tests and throwaway runs)
    storage_backend: str = "sqlite"
    # serve from memory instead of refusing to start when sqlite cannot be opened
    storage_fallback_to_memory: bool = True

    # Exchange rates / caching
    anchor_currency: str = "USD"
    rates_cache_ttl_seconds: int = 300  # 5 minutes
    rates_fallback_ttl_seconds: int = 60
    rates_history_sample_size: int = 20
    http_timeout_seconds: float = 8.0
    primary_rates_url: AnyHttpUrl = "https://api.exchangerate-api.com/v4/latest"
    secondary_rates_url: AnyHttpUrl = "https://apilayer.net/api/live"
    currencylayer_key: Optional[str] = None

    # Hawala settlement
    hawala_max_amount: float = 1_000_000
    hawala_rate_tolerance_pct: float = 5.0
    fee_percent: float = 0.0
    fee_floor: float = 0.0

    # Notifications (SMS gateway webhook; log-only when unset)
    notification_gateway_url: Optional[AnyHttpUrl] = None
    notification_timeout_seconds: float = 5.0
    notification_max_attempts: int = 2
    notification_workers: int = 4

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        if self.storage_backend not in {"sqlite", "memory"}:
            raise ValueError(
                f"Unsupported storage_backend '{self.storage_backend}'. Allowed: sqlite, memory"
            )
        if self.storage_backend == "sqlite":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.anchor_currency = self.anchor_currency.upper()
        if self.fee_percent < 0 or self.fee_floor < 0:
            raise ValueError("fee_percent and fee_floor must be non-negative")
        if self.notification_max_attempts < 1:
            raise ValueError("notification_max_attempts must be at least 1")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
