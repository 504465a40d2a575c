"""
Centralized application constants.

This file acts as the single point of truth for business logic constants
shared across the sync, metrics, import and shipping services.
"""

# ==============================================================================
# ORDER BUSINESS LOGIC
# ==============================================================================

# Statuses where no money changed hands (excluded from every revenue/profit sum)
EXCLUDED_ORDER_STATUSES = ("checkout-draft", "cancelled", "draft")

# Default status when the source sends none
DEFAULT_ORDER_STATUS = "pending"

# Canonical order number prefix
ORDER_NUMBER_PREFIX = "Order #"

# Stock status labels stored on products
STOCK_IN = "In Stock"
STOCK_LOW = "LOW STOCK"
STOCK_OUT = "OUT OF STOCK"

# Currency formatting
CURRENCY_DECIMAL_PLACES = 2

# ==============================================================================
# EXPENSES
# ==============================================================================

EXPENSE_CATEGORIES = [
    "Packaging",
    "Labels",
    "Tape",
    "Stickers",
    "Supplies",
    "Software",
    "Marketing",
    "Shipping Supplies",
    "Office",
    "Other",
    "Inventory",
]

# Category used for carrier-synced shipping expenses
SHIPPING_EXPENSE_CATEGORY = "shipping"

# ==============================================================================
# WOOCOMMERCE SYNC
# ==============================================================================

WOOCOMMERCE_API_PATH = "/wp-json/wc/v3"

# Maximum items per API page (WooCommerce limit is 100)
WOOCOMMERCE_PAGE_SIZE = 100

# Hard stop for runaway pagination
WOOCOMMERCE_MAX_PAGES = 1000

# Retry policy for the WooCommerce client (network errors and 5xx only)
WOOCOMMERCE_MAX_RETRIES = 3
WOOCOMMERCE_RETRY_BASE_DELAY_SECONDS = 1.0

# Delay between processed items to avoid overwhelming the database
SYNC_ITEM_DELAY_SECONDS = 0.05

SYNC_RESOURCES = ("products", "coupons", "orders")
SYNC_MODES = ("full", "incremental")

# Scheduled incremental sync interval
SYNC_INTERVAL_MINUTES = 15

# Daily full sync hour (24-hour format, UTC)
DAILY_SYNC_HOUR = 3

# Number of sync results kept in memory for the status endpoint
SYNC_HISTORY_SIZE = 10

# ==============================================================================
# SHIPPING (CARRIER RATES)
# ==============================================================================

SHIPPO_API_BASE_URL = "https://api.goshippo.com"

DEFAULT_PARCEL_LENGTH = 10.0
DEFAULT_PARCEL_WIDTH = 8.0
DEFAULT_PARCEL_HEIGHT = 6.0
DEFAULT_PARCEL_WEIGHT = 1.0
DEFAULT_DISTANCE_UNIT = "in"
DEFAULT_MASS_UNIT = "lb"

DEFAULT_RATE_CURRENCY = "USD"

# Estimated days assumed for rates that report none
UNKNOWN_ESTIMATED_DAYS = 999

# Orders costed more recently than this are not re-quoted unless forced
SHIPPING_RESYNC_INTERVAL_SECONDS = 60 * 60

SHIPPING_COST_SOURCE = "shippo_rate_estimate"

COUNTRY_CODE_MAP = {
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "us": "US",
    "u.s.": "US",
    "u.s.a.": "US",
    "america": "US",
    "canada": "CA",
    "united kingdom": "GB",
    "uk": "GB",
    "great britain": "GB",
    "australia": "AU",
    "mexico": "MX",
}

# ==============================================================================
# SHIPPING OUTBOX
# ==============================================================================

OUTBOX_MAX_ATTEMPTS = 5
OUTBOX_RETRY_BASE_SECONDS = 60
OUTBOX_BATCH_SIZE = 20
OUTBOX_POLL_INTERVAL_SECONDS = 60

# ==============================================================================
# FLAT-FILE IMPORT AND RECONCILIATION
# ==============================================================================

CSV_FILE_PREFIX = "Vici_Order_Tracker_with_Expenses_v2 - "
CSV_FILES = {
    "products": "Product_Inventory",
    "tiered_pricing": "Tiered_Pricing",
    "coupons": "Coupons",
    "orders": "Orders",
    "expenses": "Expenses",
}

# Header marker for the expenses sheet (the export has preamble rows)
EXPENSES_HEADER_MARKER = "Date,Category,Description"

CURRENCY_TOLERANCE = 0.01
PERCENT_TOLERANCE = 0.01

RECONCILIATION_REPORT_FILE = "reconciliation-report.json"

# ==============================================================================
# ENVIRONMENT
# ==============================================================================

REQUIRED_ENV_VARS = [
    "DATABASE_URL",
    "WOOCOMMERCE_STORE_URL",
    "WOOCOMMERCE_CONSUMER_KEY",
    "WOOCOMMERCE_CONSUMER_SECRET",
]

OPTIONAL_ENV_VARS = [
    "SHIPPO_API_TOKEN",
    "SHIPPO_ADDRESS_FROM_STREET1",
    "SHIPPO_ADDRESS_FROM_CITY",
    "SHIPPO_ADDRESS_FROM_STATE",
    "SHIPPO_ADDRESS_FROM_ZIP",
    "GLITCHTIP_DSN",
]
