from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    model_config = {"extra": "ignore", "env_file": ".env"}
    DATABASE_URL: str = "sqlite:///./dev.db"
    PORT: int = 8000
    COUNTRY_API: str = "https://restcountries.com/v2/all?fields=name,capital,region,population,flag,currencies"
    EXCHANGE_API: str = "https://open.er-api.com/v6/latest/USD"

    # Upper bound for each external call, in seconds
    EXTERNAL_TIMEOUT_SECONDS: float = 10.0

    # Logging configuration used by country_api.logging
    LOG_LEVEL: str = "INFO"
    CONSOLE_LOG_LEVEL: str = "INFO"
    REFRESH_LOG_LEVEL: str = "INFO"
    GATEWAY_LOG_LEVEL: str = "INFO"
    DB_LOG_LEVEL: str = "WARNING"
    REQUEST_LOG_LEVEL: str = "INFO"
    SLOW_QUERY_THRESHOLD_MS: float = 200.0

    # Base directory of the project
    BASE_DIR: Path = Path(__file__).resolve().parent.parent

    # Where summary.png is written; defaults to <BASE_DIR>/cache
    CACHE_DIR: Path | None = None

    @property
    def cache_dir(self) -> Path:
        return Path(self.CACHE_DIR) if self.CACHE_DIR else self.BASE_DIR / "cache"

    @property
    def summary_image_path(self) -> Path:
        return self.cache_dir / "summary.png"


settings = Settings()
