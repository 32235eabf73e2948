# rukun/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///rukun/rukun_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours
    refresh_token_expire_minutes: int = 60 * 24 * 30  # 30 days

    # --- CORS ---
    cors_origins: List[AnyHttpUrl] = ["http://localhost:5173"]  # type: ignore[assignment]

    # --- Dues ---
    # "Today" for accrual status is always evaluated in this zone.
    reference_timezone: str = "Asia/Jakarta"
    default_due_day: int = 10
    currency: str = "IDR"

    # --- Payment gateway ---
    stripe_api_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    frontend_url: str = "http://localhost:5173"

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def cors_allow_origins(self) -> List[str]:
        return [str(origin).rstrip("/") for origin in self.cors_origins]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
