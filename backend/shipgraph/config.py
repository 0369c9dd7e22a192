from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    STORE_BACKEND: str = "relational"  # relational, wide_column
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"
    NOTIFY_DELAY_MS: int = 0
    RECONCILE_INTERVAL_SECONDS: int = 300  # 0 disables the scheduled sweep
    RECONCILE_LOCK_TIMEOUT_SECONDS: float = 1.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
