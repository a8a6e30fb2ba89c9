import os

# ----------------------------
# Config & Constants
# ----------------------------
SITE_NAME = "Souq"
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

# Supabase Postgres connection string (Settings > Database). Local dev and
# tests run against SQLite.
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./souq.db")
AUTO_CREATE_SCHEMA = os.environ.get("AUTO_CREATE_SCHEMA", "1") == "1"

SUPABASE_URL = os.environ.get("SUPABASE_URL", "http://localhost:54321")
SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")

PAYMENTS_BACKEND = os.environ.get("PAYMENTS_BACKEND", "stripe").lower()  # 'stripe' | 'mock'
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2024-06-20")

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/api/webhooks/stripe"
)

WEBHOOK_EVENTS_BACKEND = os.environ.get("WEBHOOK_EVENTS_BACKEND", "pg").lower()  # 'pg' | 'redis'
WEBHOOK_EVENT_TTL_SECONDS = int(os.environ.get("WEBHOOK_EVENT_TTL_SECONDS", str(7 * 24 * 3600)))
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # 'text' | 'json'

CATEGORIES = [
    "Electronics", "Fashion", "Home", "Toys",
    "Books", "Sports", "Beauty", "Automotive",
]
CONDITIONS = ["New", "Like New", "Good", "Fair", "Used"]
ALL_CATEGORIES = "All Categories"

MIN_PASSWORD_LENGTH = 6
