"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Any, Dict, List, Optional


class EBankingConfig(BaseSettings):
    """eBanking ledger core configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "ebanking.db"

    # Concurrency configuration
    lock_timeout_seconds: float = 5.0
    max_retries: int = 3  # Retries for contention/conflict failures
    retry_backoff_seconds: float = 0.01

    # History pagination
    default_page_size: int = 5
    max_page_size: int = 100

    # Security configuration
    jwt_secret: str = "change-me-in-production-change-me-in-production-change-me-in-production"  # HS512 wants 64+ bytes
    jwt_algorithm: str = "HS512"
    jwt_expiry_minutes: int = 10
    auth_enabled: bool = True
    # Seed users for the in-memory identity provider: [{"username", "password", "roles"}]
    users: List[Dict[str, Any]] = []

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8085
    cors_allowed_origins: List[str] = ["*"]

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "EBANKING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = EBankingConfig()


def get_config() -> EBankingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EBankingConfig:
    """Reload configuration from environment"""
    global config
    config = EBankingConfig()
    return config
