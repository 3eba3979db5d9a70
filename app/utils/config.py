"""Configuration module for the Copperx transfer bot."""

import os
from decimal import Decimal
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Copperx API Configuration
    copperx_api_base_url: str = Field(default="https://income-api.copperx.io", alias="COPPERX_API_BASE_URL")
    copperx_api_timeout: float = Field(default=30.0, alias="COPPERX_API_TIMEOUT")

    # Application Configuration
    app_name: str = Field(default="Copperx Transfer Bot", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # FastAPI Configuration
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_reload: bool = Field(default=False, alias="API_RELOAD")

    # MongoDB Configuration (auth sessions)
    mongodb_url: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URL")
    mongodb_database: str = Field(default="copperx_bot", alias="MONGODB_DATABASE")
    # Fernet key for access tokens at rest; generate with Fernet.generate_key()
    session_encryption_key: str = Field(default="", alias="SESSION_ENCRYPTION_KEY")

    # Telegram Bot (chat interface)
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_secret: str = Field(default="", alias="TELEGRAM_WEBHOOK_SECRET")
    telegram_use_polling: bool = Field(default=True, alias="TELEGRAM_USE_POLLING")

    # Security
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:8000"],
        alias="CORS_ORIGINS"
    )

    # Transfer rules
    default_symbol: str = Field(default="USDC", alias="DEFAULT_SYMBOL")
    email_transfer_min_amount: Decimal = Field(default=Decimal("1"), alias="EMAIL_TRANSFER_MIN_AMOUNT")
    bank_withdrawal_min_amount: Decimal = Field(default=Decimal("50"), alias="BANK_WITHDRAWAL_MIN_AMOUNT")
    transfer_history_page_size: int = Field(default=10, alias="TRANSFER_HISTORY_PAGE_SIZE")

    # Conversation state lifetime
    flow_idle_timeout_minutes: int = Field(default=30, alias="FLOW_IDLE_TIMEOUT_MINUTES")
    flow_sweep_interval_seconds: int = Field(default=60, alias="FLOW_SWEEP_INTERVAL_SECONDS")
    quote_ttl_seconds: int = Field(default=300, alias="QUOTE_TTL_SECONDS")

    # Logging
    log_file: str = Field(default="logs/app.log", alias="LOG_FILE")
    log_rotation: str = Field(default="10 MB", alias="LOG_ROTATION")
    log_retention: str = Field(default="30 days", alias="LOG_RETENTION")

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token.strip())


# Create global settings instance
settings = Settings()

# Ensure logs directory exists
try:
    log_dir = os.path.dirname(settings.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
except OSError as e:
    print(f"Warning: Could not create logs directory: {e}")
