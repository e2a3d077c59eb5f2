"""Application configuration."""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./data/tokenhub.db"

    # Encryption for upstream channel keys (validated by EncryptionService)
    encryption_key: Optional[str] = None

    # Tokens
    max_group_priorities: int = 32
    token_key_length: int = 48
    token_name_max_length: int = 30

    # Group configuration (usable groups, ratios, auto groups)
    group_config_path: Optional[str] = None

    # Application
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"


settings = Settings()
