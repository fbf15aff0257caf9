"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Drivecast API"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Google Drive OAuth - checked on first use, not at startup
    DRIVE_CLIENT_ID: str = ""
    DRIVE_CLIENT_SECRET: str = ""
    DRIVE_REFRESH_TOKEN: str = ""
    DRIVE_REDIRECT_URI: str = "http://localhost"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Encoder binaries. Overrides are only used when the file exists.
    FFMPEG_PATH: Optional[str] = None
    FFPROBE_PATH: Optional[str] = None
    BINARY_CHECK_TIMEOUT_SECONDS: float = 4.0

    # Progress store: memory or redis
    PROGRESS_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    PROGRESS_TTL_SECONDS: int = 86400  # 0 keeps records until restart

    # Background job runner
    MAX_CONCURRENT_JOBS: int = 2
    SHUTDOWN_GRACE_SECONDS: float = 30.0
    UPLOAD_TEMP_DIR: Optional[str] = None

    # Media streaming
    STREAM_CACHE_CONTROL: str = (
        "public, max-age=86400, s-maxage=86400, stale-while-revalidate=604800"
    )

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
