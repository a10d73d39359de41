# src/dealeval/adapters/config.py
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    # App & logging
    ENV: str = Field(default="dev")
    LOG_LEVEL: str = Field(default="INFO")

    # persistence
    DB_URI: str = Field(default="sqlite:///dealeval.db")

    # -----------------------------
    # Zillow (RapidAPI) listings provider
    # -----------------------------
    RAPIDAPI_KEY: str | None = Field(default=None)
    ZILLOW_RAPIDAPI_HOST: str = Field(default="zillow-com1.p.rapidapi.com")

    PROVIDER_TIMEOUT_S: float = Field(default=20.0)
    PROVIDER_MAX_RETRIES: int = Field(default=2)
    PROVIDER_BACKOFF_S: float = Field(default=1.0)
    PROVIDER_MAX_PAGES: int = Field(default=20)

    # -----------------------------
    # Market data cache
    # -----------------------------
    MARKET_DATA_TTL_DAYS: int = Field(default=30)
    ARV_KEYWORDS: str = Field(default="renovated")
    SOLD_IN_LAST: str = Field(default="12m")

    # -----------------------------
    # Geocoding (OpenStreetMap Nominatim)
    # -----------------------------
    GEOCODER_URL: str = Field(default="https://nominatim.openstreetmap.org/search")
    GEOCODER_USER_AGENT: str = Field(default="DealEvaluator/1.0")
    GEOCODER_TIMEOUT_S: float = Field(default=10.0)

    model_config = SettingsConfigDict(
        env_prefix="DEALEVAL_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("PROVIDER_MAX_RETRIES", "PROVIDER_MAX_PAGES", "MARKET_DATA_TTL_DAYS", mode="before")
    @classmethod
    def _non_negative_int(cls, v: Any) -> Any:
        i = int(v)
        if i < 0:
            raise ValueError("must be non-negative")
        return i

    @field_validator("PROVIDER_TIMEOUT_S", "PROVIDER_BACKOFF_S", "GEOCODER_TIMEOUT_S", mode="before")
    @classmethod
    def _non_negative_seconds(cls, v: Any) -> Any:
        f = float(v)
        if f < 0:
            raise ValueError("seconds must be non-negative")
        return f


config = AppConfig()
