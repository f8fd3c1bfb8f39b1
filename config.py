import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_max_age_secs: int = 3600,
        cors_origins: Optional[list[str]] = None,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_max_age_secs = token_max_age_secs
        self.cors_origins = cors_origins if cors_origins is not None else ["*"]
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    token_secret = os.getenv(
        "FINANCE_TOKEN_SECRET",
        "5f0c1d9a2e7b4c3f8a6d0e1b9c7a5f3e2d4b6a8c0e1f3a5b7d9c2e4f6a8b0c1d",
    )
    token_max_age_secs = int(os.getenv("FINANCE_TOKEN_MAX_AGE_SECS", "3600"))
    cors_origins = _split_origins(os.getenv("FINANCE_CORS_ORIGINS", "*"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_max_age_secs=token_max_age_secs,
        cors_origins=cors_origins,
        log_level=log_level,
    )
