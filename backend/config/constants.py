# backend/config/constants.py

# -----------------------------
# ROLES
# -----------------------------

ROLE_CUSTOMER = "customer"
ROLE_SELLER = "seller"
ROLE_COURIER = "courier"
ROLE_SUPPORT = "support"
ROLE_ADMIN = "admin"

STAFF_ROLES = {ROLE_SUPPORT, ROLE_ADMIN}

# -----------------------------
# LOYALTY
# -----------------------------

POINTS_EXPIRY_DAYS = 365

# -----------------------------
# GIFT CARDS
# -----------------------------

GIFT_CARD_PREFIX = "YUSU"
GIFT_CARD_VALIDITY_DAYS = 365
GIFT_CARD_CODE_ATTEMPTS = 10
GIFT_CARD_REDEEM_ATTEMPTS = 3
GIFT_CARD_MAX_BULK = 500

# -----------------------------
# AFFILIATE
# -----------------------------

DEFAULT_AFFILIATE_COMMISSION_RATE = 0.1
DEFAULT_AFFILIATE_MIN_PAYOUT = 50

# -----------------------------
# PAGINATION
# -----------------------------

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
CHAT_MESSAGES_PAGE_SIZE = 50

# -----------------------------
# CACHE TTLs (seconds)
# -----------------------------

ACTIVE_PROMOTIONS_CACHE_TTL = 60
LOYALTY_PROGRAM_CACHE_TTL = 300
