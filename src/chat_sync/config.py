from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CHANGES_CHANNEL: str = "chat.changes"

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_TTL_SECONDS: int = 7 * 24 * 3600

    CORS_ORIGINS: list[str] = ["*"]

    WS_HEARTBEAT_SECONDS: int = 30

    PAGE_SIZE: int = 20
    LIVE_WINDOW_SIZE: int = 20
    UPLOAD_CONCURRENCY: int = 1
    DELETE_NOT_FOUND_POLICY: Literal["ignore", "raise"] = "ignore"

    BLOB_ROOT: Path = Path("./var/blobs")
    BLOB_BASE_URL: str = "http://localhost:8000/blobs"
    PREFERENCES_PATH: Path = Path("~/.chat_sync/credentials.json")

    LOG_LEVEL: str = "info"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
