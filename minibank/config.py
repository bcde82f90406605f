"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class MinibankConfig(BaseSettings):
    """Minibank configuration"""

    model_config = SettingsConfigDict(
        env_prefix="MINIBANK_",
        env_file=".env",
        case_sensitive=False,
    )

    # Database configuration
    database_url: str = "sqlite:///minibank.db"  # memory://, sqlite:///path, postgresql://...
    database_timeout: float = 5.0  # seconds, per connection / statement
    database_connect_attempts: int = 10
    database_connect_interval: float = 3.0  # seconds between startup attempts

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    cors_origins: List[str] = ["*"]

    # Session configuration
    session_ttl_minutes: int = 30
    session_token_bytes: int = 32
    session_issue_attempts: int = 5

    # Security configuration
    password_hash_n: int = 16384  # scrypt CPU/memory cost

    # Business rules configuration
    min_deposit_amount: str = "0.01"
    max_deposit_amount: str = "100000.00"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr


# Global configuration instance
config = MinibankConfig()


def get_config() -> MinibankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MinibankConfig:
    """Reload configuration from environment"""
    global config
    config = MinibankConfig()
    return config
