import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_max_age_days: int,
        default_currency: str,
        default_timezone: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_max_age_days = token_max_age_days
        self.default_currency = default_currency
        self.default_timezone = default_timezone
        self.log_level = log_level

    @property
    def token_max_age_secs(self) -> int:
        return self.token_max_age_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    token_secret = os.getenv(
        "FINANCE_TOKEN_SECRET",
        "5f1c9a7d2e4b8c03a6d9e2f17b4c8a05d3e6f9a2c7b1d4e8f0a3c6b9d2e5f8a1",
    )
    token_max_age_days = int(os.getenv("FINANCE_TOKEN_MAX_AGE_DAYS", "7"))
    default_currency = os.getenv("FINANCE_DEFAULT_CURRENCY", "USD").upper()
    default_timezone = os.getenv("FINANCE_DEFAULT_TIMEZONE", "UTC")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_max_age_days=token_max_age_days,
        default_currency=default_currency,
        default_timezone=default_timezone,
        log_level=log_level,
    )
