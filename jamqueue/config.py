"""Application configuration via environment variables."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """App settings loaded from .env or environment."""

    DATABASE_URL: str = "sqlite:///./jam_queue.db"
    CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Ceiling on songs simultaneously open for candidates in one jam
    JAM_MAX_OPEN_SONGS: int = 5
    JAM_HEARTBEAT_INTERVAL_SECONDS: float = 30.0

    class Config:
        env_file = ".env"


settings = Settings()
