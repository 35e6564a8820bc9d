import os
from dotenv import load_dotenv

load_dotenv()

# =====================================================
# ENV
# =====================================================
ENV = os.getenv("ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =====================================================
# DATABASE
# =====================================================
MONGO_URI = os.getenv("MONGO_URI") or os.getenv("MONGODB_URI")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "yusu")

# =====================================================
# JWT
# =====================================================
JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_MINUTES = int(os.getenv("ACCESS_TOKEN_MINUTES", 60 * 24))

# =====================================================
# CORS
# =====================================================
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")

# =====================================================
# CHECKOUT
# =====================================================
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", 5))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", 100))
POINTS_REDEMPTION_VALUE = float(os.getenv("POINTS_REDEMPTION_VALUE", 0.01))

# =====================================================
# REALTIME (SSE)
# =====================================================
SSE_MAX_CONNECTIONS = int(os.getenv("SSE_MAX_CONNECTIONS", 10000))
SSE_IDLE_TIMEOUT_SECONDS = int(os.getenv("SSE_IDLE_TIMEOUT_SECONDS", 300))
SSE_QUEUE_SIZE = int(os.getenv("SSE_QUEUE_SIZE", 100))

# =====================================================
# BACKGROUND WORKERS
# =====================================================
ENABLE_WORKERS = os.getenv("ENABLE_WORKERS", "true").lower() == "true"


def validate_production_env() -> None:
    if (ENV or "").lower() != "production":
        return

    required = {
        "JWT_SECRET": JWT_SECRET,
        "MONGODB_URI": MONGO_URI,
    }

    invalid = []
    for key, value in required.items():
        val = (value or "").strip()
        if not val or val.startswith("CHANGE_THIS"):
            invalid.append(key)

    if invalid:
        raise RuntimeError(f"Production env misconfigured. Invalid keys: {', '.join(sorted(invalid))}")
