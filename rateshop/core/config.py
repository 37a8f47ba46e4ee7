"""
Application configuration

Carrier credentials and timeouts are read here and nowhere else. The rate
engine itself never touches `settings`; the composition root
(RateManager.from_settings, the quoting CLI) passes explicit credential
objects into each carrier constructor.
"""
import logging
from decimal import Decimal
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CARRIER_TIMEOUT_SECONDS = 10.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    APP_NAME: str = "rateshop"
    LOG_LEVEL: str = "INFO"

    # Applies to every carrier without its own override
    CARRIER_TIMEOUT_SECONDS: float = DEFAULT_CARRIER_TIMEOUT_SECONDS

    # UPS (XML Rating API: license number + user id + password)
    UPS_ENABLED: bool = True
    UPS_LICENSE_NUMBER: str = ""
    UPS_USER_ID: str = ""
    UPS_PASSWORD: str = ""
    UPS_USE_PRODUCTION: bool = True
    UPS_SERVICE_DESCRIPTION: str = ""  # Empty = shop all services
    UPS_TIMEOUT_SECONDS: Optional[float] = None

    # USPS Web Tools (user id + password)
    USPS_ENABLED: bool = True
    USPS_USER_ID: str = ""
    USPS_PASSWORD: str = ""
    USPS_USE_PRODUCTION: bool = True
    USPS_TIMEOUT_SECONDS: Optional[float] = None

    # FedEx Web Services (key + password + account number + meter number)
    FEDEX_ENABLED: bool = True
    FEDEX_KEY: str = ""
    FEDEX_PASSWORD: str = ""
    FEDEX_ACCOUNT_NUMBER: str = ""
    FEDEX_METER_NUMBER: str = ""
    FEDEX_USE_PRODUCTION: bool = True
    FEDEX_SERVICE_DESCRIPTION: str = ""  # Empty = shop all services
    FEDEX_TIMEOUT_SECONDS: Optional[float] = None

    # Multiplier applied to every quoted total, e.g. 0.9 for a 10% discount
    RATE_ADJUSTMENT_FACTOR: Optional[Decimal] = None

    @field_validator("CARRIER_TIMEOUT_SECONDS", "UPS_TIMEOUT_SECONDS", "USPS_TIMEOUT_SECONDS",
                     "FEDEX_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Carrier timeouts must be greater than zero")
        return v

    @field_validator("RATE_ADJUSTMENT_FACTOR", mode="before")
    @classmethod
    def parse_adjustment_factor(cls, v):
        # Blank env var means "no adjustment"
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("RATE_ADJUSTMENT_FACTOR")
    @classmethod
    def validate_adjustment_factor(cls, v):
        if v is not None and v < 0:
            raise ValueError("RATE_ADJUSTMENT_FACTOR cannot be negative")
        return v

    @property
    def ups_configured(self) -> bool:
        return bool(self.UPS_LICENSE_NUMBER and self.UPS_USER_ID and self.UPS_PASSWORD)

    @property
    def usps_configured(self) -> bool:
        return bool(self.USPS_USER_ID)

    @property
    def fedex_configured(self) -> bool:
        return bool(
            self.FEDEX_KEY and self.FEDEX_PASSWORD and self.FEDEX_ACCOUNT_NUMBER and self.FEDEX_METER_NUMBER
        )

    def carrier_timeout(self, override: Optional[float]) -> float:
        """Per-carrier timeout, falling back to CARRIER_TIMEOUT_SECONDS."""
        return override if override is not None else self.CARRIER_TIMEOUT_SECONDS


settings = Settings()
