"""
Engine Settings
Connection-level settings loaded from environment variables or a .env file.
"""

import logging
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """
    Engine connection settings.

    Each field can be set through the aliased environment variable.
    """

    # Redis settings
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_db: int = Field(default=1, alias="REDIS_DB")
    redis_password: Optional[str] = Field(default=None, alias="REDIS_PASSWORD")
    redis_max_connections: int = Field(default=20, alias="REDIS_MAX_CONNECTIONS")
    redis_socket_timeout: float = Field(default=5.0, alias="REDIS_SOCKET_TIMEOUT")

    # Remote reasoning fallback
    remote_reasoning_url: Optional[str] = Field(default=None, alias="REMOTE_REASONING_URL")
    remote_reasoning_api_key: Optional[str] = Field(default=None, alias="REMOTE_REASONING_API_KEY")
    remote_reasoning_timeout: float = Field(default=5.0, alias="REMOTE_REASONING_TIMEOUT")
    remote_reasoning_max_retries: int = Field(default=2, alias="REMOTE_REASONING_MAX_RETRIES")

    # Vector index and models
    faiss_index_path: str = Field(default="models/cache/faiss_spaces", alias="FAISS_INDEX_PATH")
    clip_model: str = Field(default="ViT-B-32", alias="CLIP_MODEL")
    clip_pretrained: str = Field(default="openai", alias="CLIP_PRETRAINED")
    model_cache_dir: str = Field(default="models/cache", alias="MODEL_CACHE_DIR")
    device: str = Field(default="cpu", alias="ML_DEVICE")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lower-case level names."""
        return str(v).upper()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


# Global settings instance
_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get global engine settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = EngineSettings()
    return _settings


def reset_settings() -> None:
    """Reset settings (useful for testing)."""
    global _settings
    _settings = None


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for the engine.

    Args:
        level: Log level name (default: settings.log_level)
    """
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
