"""
Configuration management for the PillPulse reminder engine
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "PillPulse Reminder Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Database
    DATABASE_URL: str = "sqlite:///./pillpulse.db"
    DATABASE_ECHO: bool = False

    # Message generation (OpenAI-compatible chat completions)
    CEREBRAS_API_KEY: Optional[str] = None
    CEREBRAS_BASE_URL: str = "https://api.cerebras.ai/v1"
    LLM_MODEL: str = "llama3.1-8b"
    LLM_TEMPERATURE: float = 0.7
    LLM_REMINDER_MAX_TOKENS: int = 150
    LLM_COACHING_MAX_TOKENS: int = 120
    LLM_TIMEOUT_SECONDS: int = 30

    # Email delivery
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    SMTP_TIMEOUT_SECONDS: int = 10

    # SMS delivery
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    DEFAULT_TIMEZONE: str = "America/New_York"
    REMINDER_THRESHOLD_MINUTES: int = 30
    COACHING_HOUR: int = 9
    COACHING_LOOKBACK_DAYS: int = 3

    # Escalation policy
    ESCALATION_THRESHOLD_HOURS: int = 4
    ESCALATION_CONSECUTIVE_MISSED: int = 2
    ESCALATION_MAX_ALERTS_PER_DAY: int = 3
    ESCALATION_MAX_CONTACTS: int = 3
    ESCALATION_LOOKBACK_DAYS: int = 7

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def email_configured(self) -> bool:
        return bool(self.SMTP_HOST and self.SMTP_USER and self.SMTP_PASSWORD)

    @property
    def sms_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


class EngineConfig:
    """Fixed behaviour of the reminder engine that is not worth an env var"""

    # Streak analytics window and history size
    STREAK_LOOKBACK_DAYS: int = 90
    STREAK_HISTORY_LIMIT: int = 5

    # Coaching categories by adherence ratio
    COACHING_STREAK_RATIO: float = 1.0
    COACHING_MOTIVATION_RATIO: float = 0.8
    COACHING_RECOVERY_RATIO: float = 0.5


settings = get_settings()
engine_config = EngineConfig()
