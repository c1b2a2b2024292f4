import os

from dotenv import dotenv_values


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).lower() == "true"


class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY

    _ENV_FALLBACK = dotenv_values(".env")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    APP_ENV = os.environ.get("APP_ENV", "development").lower()

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    RATELIMIT_DEFAULT = None

    # Used for Checkout/Portal return URLs (must be https in prod)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")
    SITE_NAME = os.getenv("SITE_NAME", "Tradelog")

    # --- Stripe (Billing) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    # Either a price_... id or a prod_... id (resolved to its monthly price)
    STRIPE_PRICE_ID = os.getenv("STRIPE_PRICE_ID")
    STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
    STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))

    WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))
    # True: acknowledge (200) even when handling an event failed; False: release the
    # event marker and return 500 so Stripe redelivers.
    WEBHOOK_ACK_ON_ERROR = _flag("WEBHOOK_ACK_ON_ERROR", "true")

    TRIAL_PERIOD_DAYS = int(os.getenv("TRIAL_PERIOD_DAYS", "30"))

    # --- Identity provider ---
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    AUTH_BACKEND = os.getenv("AUTH_BACKEND") or ("supabase" if os.getenv("SUPABASE_URL") else "signed")
    AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "sb-access-token")
    AUTH_TOKEN_SALT = os.getenv("AUTH_TOKEN_SALT", "session-token-v1")
    AUTH_TOKEN_MAX_AGE = int(os.getenv("AUTH_TOKEN_MAX_AGE", str(60 * 60)))
    LOGIN_URL = os.getenv("LOGIN_URL", "/auth/login")

    ACCESS_DECISION_CACHE_SECONDS = int(os.getenv("ACCESS_DECISION_CACHE_SECONDS", "60"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    AUTH_BACKEND = os.getenv("AUTH_BACKEND", "supabase")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    AUTH_BACKEND = "signed"
    WTF_CSRF_ENABLED = False


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
