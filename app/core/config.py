from functools import lru_cache
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    # -------------------------
    # Core App Settings
    # -------------------------
    PROJECT_NAME: str = "ADC Clinic Suite"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    API_PREFIX: str = "/api/v1"
    CLINIC_NAME: str = "ADC Dental Clinic"

    # -------------------------
    # Security / Auth
    # -------------------------
    # Shared with the API gateway that signs bearer tokens
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 150

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Activity / Audit Log
    ACTIVITY_LOG_ENABLED: bool = True

    # -------------------------
    # Database
    # -------------------------
    DATABASE_URL: str = "sqlite+aiosqlite:///./adc_clinic.db"
    ALEMBIC_DB_URL: Optional[str] = None
    DATABASE_ECHO: bool = False

    # -------------------------
    # CORS
    # -------------------------
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    # -------------------------
    # Email (SMTP)
    # -------------------------
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    FROM_EMAIL: str = ""
    FROM_NAME: str = "ADC Clinic Billing"

    # -------------------------
    # PayMongo (online payments)
    # -------------------------
    PAYMONGO_SECRET_KEY: Optional[str] = None
    PAYMONGO_WEBHOOK_SECRET: Optional[str] = None
    PAYMONGO_BASE_URL: str = "https://api.paymongo.com/v1"
    PAYMONGO_TIMEOUT_SECONDS: float = 30.0
    CONVENIENCE_FEE_RATE: Decimal = Decimal("0.02")
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # -------------------------
    # Inventory
    # -------------------------
    EXPIRY_WARNING_DAYS: int = 30
    EXPIRY_ALERT_WINDOW_DAYS: int = 60

    # -------------------------
    # Model config
    # -------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------
    # Validators
    # -------------------------
    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """
        Allows:
        CORS_ORIGINS='["http://localhost:3000", "http://localhost:5173"]'
        or
        CORS_ORIGINS=http://a.com,http://b.com
        """
        if v is None or v == "":
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("ALEMBIC_DB_URL", mode="before")
    @classmethod
    def set_alembic_url(cls, v, info):
        if v:
            return v
        return info.data.get("DATABASE_URL")

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def paymongo_configured(self) -> bool:
        return bool(self.PAYMONGO_SECRET_KEY)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_USER)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance for performance.
    Use: settings = get_settings()
    """
    return Settings()
