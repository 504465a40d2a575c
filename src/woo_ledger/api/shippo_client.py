"""Shippo carrier-rate API client."""

from typing import Any, Dict, List, Optional

import httpx

from woo_ledger.config.constants import (
    COUNTRY_CODE_MAP,
    DEFAULT_RATE_CURRENCY,
    UNKNOWN_ESTIMATED_DAYS,
)
from woo_ledger.config.settings import ParcelDefaults, ShippoConfig
from woo_ledger.core.exceptions import ConfigurationError, ShippoError
from woo_ledger.core.logger import setup_logger
from woo_ledger.utils.parsers import parse_money

logger = setup_logger(__name__)

REQUIRED_ADDRESS_FIELDS = ("street1", "city", "state", "zip")


def normalize_country(country: Optional[str]) -> str:
    """Map country names to ISO-2 codes; two-letter codes pass through upper-cased."""
    if not country:
        return "US"
    value = country.strip()
    if len(value) == 2:
        return value.upper()
    return COUNTRY_CODE_MAP.get(value.lower(), value)


def normalize_address(address: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an address to the Shippo format.

    Emits both the legacy field names and the v2 aliases.
    """
    normalized = {
        "name": address.get("name"),
        "company": address.get("company"),
        "street1": address.get("street1"),
        "street2": address.get("street2"),
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("zip"),
        "country": normalize_country(address.get("country")),
        "phone": address.get("phone"),
        "email": address.get("email"),
    }
    normalized.update({
        "address_line_1": normalized["street1"],
        "address_line_2": normalized["street2"],
        "city_locality": normalized["city"],
        "state_province": normalized["state"],
        "postal_code": normalized["zip"],
        "country_code": normalized["country"],
    })
    return {k: v for k, v in normalized.items() if v not in (None, "")}


def missing_address_fields(address: Dict[str, Any]) -> List[str]:
    return [field for field in REQUIRED_ADDRESS_FIELDS if not address.get(field)]


def select_rate(
    rates: List[dict],
    currency: str = DEFAULT_RATE_CURRENCY,
    strategy: str = "cheapest",
) -> Optional[dict]:
    """
    Pick a rate.

    Rates are filtered to the requested currency; when none match the first
    rate is returned as-is. "cheapest" sorts by amount, "fastest" by
    estimated days then amount.
    """
    if not rates:
        return None

    currency_rates = [rate for rate in rates if rate.get("currency") == currency]
    if not currency_rates:
        return rates[0]

    if strategy == "fastest":
        def sort_key(rate):
            days = rate.get("estimated_days")
            return (
                days if days is not None else UNKNOWN_ESTIMATED_DAYS,
                parse_money(rate.get("amount")),
            )
    else:
        def sort_key(rate):
            return parse_money(rate.get("amount"))

    return sorted(currency_rates, key=sort_key)[0]


class ShippoClient:
    """Async HTTP client for the Shippo API."""

    def __init__(
        self,
        config: ShippoConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = config.api_token
        self.base_url = config.base_url.rstrip("/")
        self.address_from = config.address_from
        self.parcel_defaults: ParcelDefaults = config.parcel_defaults
        self.client = httpx.AsyncClient(timeout=30.0, transport=transport)

        missing = missing_address_fields(self.address_from)
        if missing:
            raise ConfigurationError(f"Missing required origin address fields: {', '.join(missing)}")

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"ShippoToken {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.client.request(method, url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling Shippo {path}: {e}")
            raise ShippoError(f"Failed to call Shippo {path}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = response.text

        if response.status_code >= 400:
            raise ShippoError(
                f"Shippo API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                response_body=data,
            )
        return data

    async def create_shipment(
        self,
        address_from: Dict[str, Any],
        address_to: Dict[str, Any],
        parcels: List[dict],
        async_mode: bool = False,
    ) -> dict:
        """Create a shipment and return it with its rate options."""
        payload = {
            "address_from": normalize_address(address_from),
            "address_to": normalize_address(address_to),
            "parcels": parcels,
            "async": async_mode,
        }
        logger.info(f"Creating Shippo shipment to {address_to.get('city')}, {address_to.get('state')}")
        return await self._request("POST", "/shipments/", payload)

    async def get_shipment(self, shipment_id: str) -> dict:
        return await self._request("GET", f"/shipments/{shipment_id}")

    async def create_transaction(
        self,
        rate_object_id: str,
        label_file_type: str = "PDF",
        async_mode: bool = False,
    ) -> dict:
        """Purchase a label for a rate."""
        payload = {
            "rate": rate_object_id,
            "label_file_type": label_file_type,
            "async": async_mode,
        }
        return await self._request("POST", "/transactions/", payload)
