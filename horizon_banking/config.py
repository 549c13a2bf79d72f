"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

import secrets
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from .logging_config import get_logger


logger = get_logger("horizon.config")


class HorizonConfig(BaseSettings):
    """Horizon banking dashboard configuration"""
    
    # Database configuration
    database_path: str = "horizon.db"
    use_sqlite: bool = True
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Security configuration
    jwt_secret: str = Field(
        default="",
        validation_alias=AliasChoices("HORIZON_JWT_SECRET", "JWT_SECRET", "NEXTAUTH_SECRET"),
    )
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    session_cookie_name: str = "horizon_session"
    password_min_length: int = 8
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Business rules configuration
    allow_negative_balance: bool = False
    max_balance_retries: int = 5

    # Transaction limits (USD, reset each UTC day)
    enable_transaction_limits: bool = True
    daily_transfer_limit: Decimal = Decimal("10000")
    daily_withdrawal_limit: Decimal = Decimal("5000")
    max_transaction_amount: Decimal = Decimal("25000")

    # Feature flags
    enable_pending_tx: bool = Field(
        default=False,
        validation_alias=AliasChoices("HORIZON_ENABLE_PENDING_TX", "ENABLE_PENDING_TX"),
    )
    
    # Outbox / mail configuration
    mail_sender: str = "Horizon Global Capital <no-reply@horizon.example>"
    mail_api_url: str = ""  # Empty = log transport only
    mail_api_key: Optional[str] = None
    mail_timeout: float = 10.0
    outbox_max_attempts: int = 5
    outbox_batch_size: int = 100
    worker_interval_seconds: int = 30
    
    class Config:
        env_prefix = "HORIZON_"
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"


# Global configuration instance
config = HorizonConfig()

_generated_secret: Optional[str] = None


def get_config() -> HorizonConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> HorizonConfig:
    """Reload configuration from environment"""
    global config
    config = HorizonConfig()
    return config


def get_jwt_secret() -> str:
    """
    Return the token signing secret.

    When no secret is configured a random one is generated for the lifetime
    of the process; issued tokens stop validating after a restart.
    """
    global _generated_secret
    if config.jwt_secret:
        return config.jwt_secret
    if _generated_secret is None:
        _generated_secret = secrets.token_urlsafe(48)
        logger.warning("JWT_SECRET is not set; using an ephemeral signing secret")
    return _generated_secret
