"""Application configuration via Pydantic Settings.

Environment-driven configuration for:
- Storage layout (datasets, caches, run artifacts, custom strategies)
- Vendor credentials and endpoints (Tiingo, Polygon)
- Vendor pacing (chunk size, inter-request delay, cache TTLs)
- Logging level and the optional OTLP telemetry endpoint

All settings can be overridden via environment variables or a .env file.
Components take explicit constructor arguments that win over these values.
"""

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # --- App Info ---
    PROJECT_NAME: str = "quantsim"
    VERSION: str = "0.3.0"
    ENV: str = "DEV"  # DEV, PROD
    LOG_LEVEL: str = "INFO"

    # --- Storage ---
    STORAGE_ROOT: Path = Path("storage")

    # --- Tiingo (EOD vendor, chunked) ---
    TIINGO_API_KEY: str = ""
    TIINGO_BASE_URL: str = "https://api.tiingo.com/tiingo/daily"
    TIINGO_CACHE_TTL_SECONDS: float = 30 * 60
    TIINGO_MAX_CHUNK_DAYS: int = 30
    TIINGO_REQUEST_DELAY_MS: int = 1000
    TIINGO_MAX_RETRIES: int = 5

    # --- Polygon (aggregates vendor) ---
    POLYGON_API_KEY: str = ""
    POLYGON_BASE_URL: str = "https://api.polygon.io/v2/aggs/ticker"
    POLYGON_CACHE_TTL_SECONDS: float = 30 * 60

    # --- HTTP ---
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # --- Telemetry ---
    OTEL_EXPORTER_OTLP_ENDPOINT: Optional[str] = None

    @field_validator("TIINGO_MAX_CHUNK_DAYS")
    @classmethod
    def check_chunk_days(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TIINGO_MAX_CHUNK_DAYS must be at least 1")
        return v

    @property
    def DATASETS_DIR(self) -> Path:
        return self.STORAGE_ROOT / "datasets"

    @property
    def CACHE_DIR(self) -> Path:
        return self.DATASETS_DIR / ".cache"

    @property
    def RUNS_DIR(self) -> Path:
        return self.STORAGE_ROOT / "runs"

    @property
    def CUSTOM_STRATEGIES_DIR(self) -> Path:
        return self.STORAGE_ROOT / "strategies" / "custom"


settings = Settings()
