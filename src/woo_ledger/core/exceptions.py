"""Exception hierarchy for the ledger services."""

from typing import Any, Optional


class WooLedgerError(Exception):
    """Base class for all application errors."""


class ConfigurationError(WooLedgerError):
    """Required configuration is missing; nothing downstream can proceed."""


class WooCommerceAPIError(WooLedgerError):
    """Error response or transport failure from the WooCommerce REST API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Network errors and 5xx are retried; 4xx never are."""
        return self.status_code is None or self.status_code >= 500


class ShippoError(WooLedgerError):
    """Error response from the carrier rate API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class OrderNotFoundError(WooLedgerError):
    """No stored order matches a caller-supplied identifier."""

    def __init__(self, identifier: str):
        super().__init__(f"Order not found: {identifier}")
        self.identifier = identifier


class IngestValidationError(WooLedgerError):
    """Webhook payload is missing required fields."""
