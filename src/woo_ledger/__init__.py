"""WooCommerce order ledger and profit analytics."""

__version__ = "1.0.0"
