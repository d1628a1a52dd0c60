from decimal import Decimal


# Payment is authorized at approval and captured this many days before delivery.
CAPTURE_LEAD_DAYS = 4

# Typical delay between a capture and the payout landing in the operating account.
STRIPE_PAYOUT_DAYS = 2

# Default look-ahead window for rules that do not configure notification_days.
NOTIFICATION_LEAD_DAYS = 7

APPROVAL_TOKEN_TTL_HOURS = 72

# Vendors need a few minutes before a fresh order has anything to report.
VENDOR_SYNC_DELAY_MINUTES = 10

# Headroom the vendor account should keep above outstanding obligations.
ZMA_BUFFER_AMOUNT = Decimal("100.00")

RECOMMENDED_TRANSFER_MARGIN = Decimal("1.1")

DEFAULT_BUDGET_LIMIT = Decimal("50.00")
DEFAULT_MIN_PRICE = Decimal("10.00")
DEFAULT_MAX_ITEMS = 1
CANDIDATE_LIMIT = 20
