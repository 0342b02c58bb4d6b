"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LoanLedgerConfig(BaseSettings):
    """Loan ledger service configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///loan_ledger.db"  # memory:// for tests, postgresql://... for Postgres
    database_pool_size: int = 20  # PostgreSQL only
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: str = "*"  # Comma separated
    
    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "loan-ledger-api"
    password_min_length: int = 6
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr
    
    # Presentation
    currency_symbol: str = "฿"  # Thai baht
    page_size_default: int = 10
    page_size_max: int = 100
    
    model_config = SettingsConfigDict(
        env_prefix="LOAN_LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    
    @property
    def cors_origin_list(self):
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global configuration instance
config = LoanLedgerConfig()


def get_config() -> LoanLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LoanLedgerConfig()
    return config
