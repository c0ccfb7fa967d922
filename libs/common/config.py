from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "test", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth
    # Placeholder keeps local/test runs working; real deployments override via env.
    JWT_SECRET: str = "test-jwt-secret"
    JWT_ALGORITHM: str = "HS256"

    # Microservices URLs
    ORDERS_SERVICE_URL: str = "http://orders-service:8001"
    LEDGER_SERVICE_URL: str = "http://ledger-service:8002"

    # Chain service (blockchain settlement). Empty URL disables outbound calls.
    CHAIN_SERVICE_URL: str = ""
    CHAIN_SERVICE_API_KEY: str = ""
    CHAIN_SERVICE_TIMEOUT: float = 15.0
    CHAIN_WEBHOOK_SECRET: str = ""

    # Currency used when checkout records purchase/sale ledger entries
    SETTLEMENT_CURRENCY: Literal["SOL", "USDC", "TOKEN"] = "USDC"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
