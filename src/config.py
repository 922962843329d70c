from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Environment
    environment: str = "development"  # "development" or "production"

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/dispatch.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # Scheduling (all cadences run in this zone)
    timezone: str = "America/Chicago"
    daily_reminder_hour: int = 22
    daily_reminder_minute: int = 0
    promotion_window_minutes: float = 1.0
    # Comma-separated lead times, e.g. "60,180"
    upcoming_alert_lookahead_minutes: str = "30"
    upcoming_alert_margin_minutes: float = 2.5

    # Recurrence
    recurrence_batch_size: int = 50
    recurrence_default_horizon_days: int = 365

    # Fare
    fare_base: float = 3.0
    fare_per_minute: float = 0.45

    # Notifications
    notification_enabled: bool = True
    notification_timeout: float = 10.0
    # Threads sending ride-activated notices off the promotion tick
    notification_workers: int = 4
    brand_name: str = "Taxi Rosa"
    whatsapp_api_url: str = ""
    whatsapp_api_key: str = ""
    whatsapp_instance: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # Admin
    admin_api_key: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def upcoming_alert_lookaheads(self) -> List[float]:
        return [
            float(value.strip())
            for value in self.upcoming_alert_lookahead_minutes.split(",")
            if value.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
