"""
Configuration management for the asset uploader.
Loads environment variables using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    # Platform API
    ASSET_API_DOMAIN: str = "https://api.pixelbin.io"
    ASSET_API_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 60.0

    # Application
    LOG_LEVEL: str = "INFO"

    # Upload defaults (overridable per upload call)
    UPLOAD_CHUNK_SIZE: int = 10 * 1024 * 1024  # 10MB per part
    UPLOAD_MAX_RETRIES: int = 2
    UPLOAD_CONCURRENCY: int = 3
    UPLOAD_BACKOFF_FACTOR: float = 2.0
    UPLOAD_BASE_DELAY_SECONDS: float = 1.0
    UPLOAD_MAX_DELAY_SECONDS: float = 60.0

    # Chunks read ahead of an admission slot (controls memory usage)
    # Worst case held in memory: (concurrency + buffered) * chunk size
    UPLOAD_MAX_BUFFERED_CHUNKS: int = 3

    # Stop sibling chunks once one chunk has failed for good
    UPLOAD_CANCEL_ON_FAILURE: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
