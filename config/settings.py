"""Application settings and environment configuration."""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from a .env file if present
load_dotenv()


class Settings(BaseSettings):
    """Centralized application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Application
    environment: str = Field("development", alias="ENVIRONMENT")
    debug: bool = Field(False, alias="DEBUG")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(8000, alias="PORT")

    # Twilio
    twilio_account_sid: Optional[str] = Field(None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: Optional[str] = Field(None, alias="TWILIO_PHONE_NUMBER")
    public_base_url: Optional[str] = Field(None, alias="PUBLIC_BASE_URL")

    # Voice-agent runtime (LiveKit SIP ingress)
    livekit_sip_endpoint: Optional[str] = Field(None, alias="LIVEKIT_SIP_ENDPOINT")
    livekit_sip_username: Optional[str] = Field(None, alias="LIVEKIT_SIP_USERNAME")
    livekit_sip_password: Optional[str] = Field(None, alias="LIVEKIT_SIP_PASSWORD")

    # Data layer
    database_url: str = Field("sqlite:///./call_tracking.db", alias="DATABASE_URL")
    db_timeout_seconds: float = Field(5.0, alias="DB_TIMEOUT_SECONDS")

    # Call tracking
    resolver_window_minutes: int = Field(5, alias="RESOLVER_WINDOW_MINUTES")
    transfer_timeout_seconds: int = Field(30, alias="TRANSFER_TIMEOUT_SECONDS")

    @property
    def base_url(self) -> str:
        """Public base URL Twilio uses to reach this service."""
        base = self.public_base_url or f"http://{self.host}:{self.port}"
        return base.rstrip("/")

    @property
    def incoming_webhook_url(self) -> str:
        return f"{self.base_url}/api/calls/incoming"

    @property
    def incoming_callback_url(self) -> str:
        return f"{self.base_url}/api/calls/incoming/callback"

    @property
    def refer_url(self) -> str:
        return f"{self.base_url}/api/calls/incoming/refer"

    @property
    def transfer_no_answer_url(self) -> str:
        return f"{self.base_url}/api/calls/incoming/transfer-no-answer"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
