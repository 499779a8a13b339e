import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./membership.db")
RUN_MIGRATIONS = _env_bool("RUN_MIGRATIONS", False)

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")

# ✅ Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ✅ Frontend
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
PRODUCTION_APP_URL = os.getenv("PRODUCTION_APP_URL", "https://www.forswags.com").rstrip("/")
CORS_ORIGINS = _env_list(
    "CORS_ORIGINS",
    "http://localhost:5173,https://app.forswags.com,https://www.forswags.com",
)

# Hostnames that select production Stripe credentials. Exact match only.
PRODUCTION_HOSTS = _env_list("PRODUCTION_HOSTS", "www.forswags.com")

# ✅ Stripe
# STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET are the legacy single-environment names
# and only ever back the sandbox configuration.
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_SECRET_KEY_SANDBOX = os.getenv("STRIPE_SECRET_KEY_SANDBOX") or STRIPE_SECRET_KEY
STRIPE_SECRET_KEY_PRODUCTION = os.getenv("STRIPE_SECRET_KEY_PRODUCTION")
STRIPE_WEBHOOK_SECRET_SANDBOX = os.getenv("STRIPE_WEBHOOK_SECRET_SANDBOX") or STRIPE_WEBHOOK_SECRET
STRIPE_WEBHOOK_SECRET_PRODUCTION = os.getenv("STRIPE_WEBHOOK_SECRET_PRODUCTION")

STRIPE_API_TIMEOUT_SECONDS = float(os.getenv("STRIPE_API_TIMEOUT_SECONDS", "10"))
STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "1"))

# ✅ Membership lifecycle
STATUS_CACHE_TTL_SECONDS = int(os.getenv("STATUS_CACHE_TTL_SECONDS", "300"))
ARCHIVE_RESTORE_DAYS = int(os.getenv("ARCHIVE_RESTORE_DAYS", "180"))
# Migration-period leniency: look up product ids in the other environment's catalog.
CATALOG_CROSS_ENV_FALLBACK = _env_bool("CATALOG_CROSS_ENV_FALLBACK", True)
