import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _split_csv(raw: str) -> list:
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8080"))
    api_prefix: str = os.getenv("API_PREFIX", "/api")
    # Mutating endpoints require X-API-Key only when this is set
    api_key: Optional[str] = os.getenv("API_KEY") or None
    cors_origins: list = field(default_factory=lambda: _split_csv(os.getenv("CORS_ORIGINS", "*")))

    # Database settings
    data_file: str = os.getenv("LIBRARY_DATA_FILE", "library.db")

    # Client settings
    api_url: str = os.getenv("LIBRARY_API_URL", "http://localhost:8080/api")
    api_timeout: float = float(os.getenv("API_TIMEOUT", "10"))

    # Lending rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    max_active_borrows: int = int(os.getenv("MAX_ACTIVE_BORROWS", "3"))
    fine_per_day: float = float(os.getenv("FINE_PER_DAY", "10.0"))
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "₹")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Management API")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")


settings = Settings()
