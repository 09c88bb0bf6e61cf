"""
Application configuration management.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Unity IAP Validator"
    environment: str = "development"
    debug: bool = False
    log_level: str = "info"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Store credentials (Optional)
    apple_shared_secret: Optional[str] = None
    google_service_account_json: Optional[str] = None  # inline JSON or path to key file

    # Apple verifyReceipt endpoints
    apple_production_url: str = "https://buy.itunes.apple.com"
    apple_sandbox_url: str = "https://sandbox.itunes.apple.com"

    # Outbound HTTP
    http_timeout: float = 30.0  # seconds

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
