# barbershop/config.py

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


load_dotenv()


class Settings(BaseSettings):
    # SQLAlchemy async URL; the default is a local SQLite file
    database_url: str = Field(
        default="sqlite+aiosqlite:///./barbershop.db", alias="DATABASE_URL"
    )

    # All "today"/"now" comparisons happen in this zone
    business_timezone: str = Field(default="America/Bogota", alias="BUSINESS_TIMEZONE")

    shop_name: str = Field(default="Big Brother Barber Shop", alias="SHOP_NAME")

    session_timeout_minutes: float = Field(default=10, alias="SESSION_TIMEOUT_MINUTES")
    sweep_interval_minutes: float = Field(default=5, alias="SWEEP_INTERVAL_MINUTES")
    booking_days_ahead: int = Field(default=7, alias="BOOKING_DAYS_AHEAD")

    # WhatsApp Cloud API; when the token is missing messages are only logged
    whatsapp_access_token: Optional[str] = Field(default=None, alias="WHATSAPP_ACCESS_TOKEN")
    whatsapp_phone_number_id: Optional[str] = Field(
        default=None, alias="WHATSAPP_PHONE_NUMBER_ID"
    )
    whatsapp_api_version: str = Field(default="v18.0", alias="WHATSAPP_API_VERSION")

    seed_staff: bool = Field(default=True, alias="SEED_STAFF")
    # PIN given to seeded staff; without it they cannot open the admin panel
    default_staff_pin: Optional[str] = Field(default=None, alias="DEFAULT_STAFF_PIN")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("business_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @field_validator("session_timeout_minutes", "sweep_interval_minutes")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("intervals must be positive")
        return value

    @field_validator("booking_days_ahead")
    @classmethod
    def _booking_window(cls, value: int) -> int:
        # one list message holds at most 10 rows
        if not 1 <= value <= 10:
            raise ValueError("booking_days_ahead must be between 1 and 10")
        return value

    @field_validator("default_staff_pin")
    @classmethod
    def _pin_format(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not (value.isdigit() and 4 <= len(value) <= 6):
            raise ValueError("DEFAULT_STAFF_PIN must be 4-6 digits")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
