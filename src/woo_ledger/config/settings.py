"""Configuration management using Pydantic Settings.

Loads configuration from environment variables with .env file support.
Services never read this module directly; entry points build the explicit
config objects below and pass them to constructors.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic_settings import BaseSettings

from woo_ledger.config.constants import (
    DEFAULT_DISTANCE_UNIT,
    DEFAULT_MASS_UNIT,
    DEFAULT_PARCEL_HEIGHT,
    DEFAULT_PARCEL_LENGTH,
    DEFAULT_PARCEL_WEIGHT,
    DEFAULT_PARCEL_WIDTH,
    SHIPPO_API_BASE_URL,
    SYNC_ITEM_DELAY_SECONDS,
)


class Settings(BaseSettings):
    """Application configuration."""

    # Database Configuration
    database_url: str = "sqlite+aiosqlite:///./woo_ledger.db"

    # WooCommerce Configuration
    woocommerce_store_url: Optional[str] = None
    woocommerce_consumer_key: Optional[str] = None
    woocommerce_consumer_secret: Optional[str] = None

    # Shippo Configuration
    shippo_api_token: Optional[str] = None
    shippo_api_base_url: str = SHIPPO_API_BASE_URL
    shippo_address_from_name: Optional[str] = None
    shippo_address_from_company: Optional[str] = None
    shippo_address_from_street1: Optional[str] = None
    shippo_address_from_street2: Optional[str] = None
    shippo_address_from_city: Optional[str] = None
    shippo_address_from_state: Optional[str] = None
    shippo_address_from_zip: Optional[str] = None
    shippo_address_from_country: str = "US"
    shippo_address_from_phone: Optional[str] = None
    shippo_address_from_email: Optional[str] = None
    shippo_default_length: float = DEFAULT_PARCEL_LENGTH
    shippo_default_width: float = DEFAULT_PARCEL_WIDTH
    shippo_default_height: float = DEFAULT_PARCEL_HEIGHT
    shippo_default_weight: float = DEFAULT_PARCEL_WEIGHT
    shippo_distance_unit: str = DEFAULT_DISTANCE_UNIT
    shippo_mass_unit: str = DEFAULT_MASS_UNIT

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    environment: str = "development"

    # Scheduler Configuration
    scheduler_enabled: bool = False
    sync_item_delay_seconds: float = SYNC_ITEM_DELAY_SECONDS

    # Error Monitoring (GlitchTip / Sentry compatible DSN)
    glitchtip_dsn: Optional[str] = None

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def woocommerce_config(self) -> Optional["WooCommerceConfig"]:
        """Build the WooCommerce client config, or None when not configured."""
        if not (
            self.woocommerce_store_url
            and self.woocommerce_consumer_key
            and self.woocommerce_consumer_secret
        ):
            return None
        return WooCommerceConfig(
            store_url=self.woocommerce_store_url,
            consumer_key=self.woocommerce_consumer_key,
            consumer_secret=self.woocommerce_consumer_secret,
        )

    def shippo_config(self) -> Optional["ShippoConfig"]:
        """Build the carrier config, or None when token or origin address is missing."""
        if not self.shippo_api_token:
            return None

        address_from = {
            "name": self.shippo_address_from_name,
            "company": self.shippo_address_from_company,
            "street1": self.shippo_address_from_street1,
            "street2": self.shippo_address_from_street2,
            "city": self.shippo_address_from_city,
            "state": self.shippo_address_from_state,
            "zip": self.shippo_address_from_zip,
            "country": self.shippo_address_from_country,
            "phone": self.shippo_address_from_phone,
            "email": self.shippo_address_from_email,
        }
        if not all(address_from[key] for key in ("street1", "city", "state", "zip")):
            return None

        return ShippoConfig(
            api_token=self.shippo_api_token,
            base_url=self.shippo_api_base_url,
            address_from={k: v for k, v in address_from.items() if v},
            parcel_defaults=ParcelDefaults(
                length=self.shippo_default_length,
                width=self.shippo_default_width,
                height=self.shippo_default_height,
                weight=self.shippo_default_weight,
                distance_unit=self.shippo_distance_unit,
                mass_unit=self.shippo_mass_unit,
            ),
        )

    def sync_config(self) -> "SyncConfig":
        """Build the sync orchestrator config."""
        return SyncConfig(item_delay_seconds=self.sync_item_delay_seconds)


@dataclass
class WooCommerceConfig:
    """Credentials for the WooCommerce REST API."""
    store_url: str
    consumer_key: str
    consumer_secret: str


@dataclass
class ParcelDefaults:
    """Fallback parcel dimensions used when products carry no data."""
    length: float = DEFAULT_PARCEL_LENGTH
    width: float = DEFAULT_PARCEL_WIDTH
    height: float = DEFAULT_PARCEL_HEIGHT
    weight: float = DEFAULT_PARCEL_WEIGHT
    distance_unit: str = DEFAULT_DISTANCE_UNIT
    mass_unit: str = DEFAULT_MASS_UNIT


@dataclass
class ShippoConfig:
    """Carrier API credentials, origin address and parcel defaults."""
    api_token: str
    address_from: dict
    base_url: str = SHIPPO_API_BASE_URL
    parcel_defaults: ParcelDefaults = field(default_factory=ParcelDefaults)


@dataclass
class SyncConfig:
    """Tuning for the sync orchestrator."""
    item_delay_seconds: float = SYNC_ITEM_DELAY_SECONDS
    resources: List[str] = field(
        default_factory=lambda: ["products", "coupons", "orders"]
    )


# Create a global settings instance
settings = Settings()
