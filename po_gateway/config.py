"""Configuration management using Pydantic Settings"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./po_gateway.db"

    # Broker venue
    broker_api_base: str = "https://api.remarkets.primary.com.ar"
    broker_session_hours: float = 8.0

    # Service
    service_name: str = "po-gateway"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 10.0
    retry_sequence_ms: List[int] = [2000, 5000, 10000]
    rate_limit_default_wait_ms: int = 60_000

    # Token refresh happens when expiry is this close
    token_refresh_threshold_ms: int = 60_000

    # Repo (caucion) fees
    repo_reconciliation_tolerance: float = 0.01
    repo_fee_config_path: Optional[str] = None


settings = Settings()
