import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2024-06-20")
    STRIPE_API_TIMEOUT = float(os.environ.get("STRIPE_API_TIMEOUT", 10))  # seconds
    STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", 2))

    # --- Frontend (redirect targets + CORS origin) ---
    CLIENT_URL = os.environ.get("CLIENT_URL", "http://localhost:5173")
    PORT = int(os.environ.get("PORT", 4242))

    # --- Checkout: one-time payment ---
    CHECKOUT_AMOUNT = int(os.environ.get("CHECKOUT_AMOUNT", 100))  # minor units (1,00 EUR)
    CHECKOUT_CURRENCY = os.environ.get("CHECKOUT_CURRENCY", "eur")
    CHECKOUT_PRODUCT_NAME = os.environ.get(
        "CHECKOUT_PRODUCT_NAME", "Voice CV recording access (one-time payment)"
    )

    # --- Payment store ---
    # "json" writes a single flat file, "sql" uses the payment_records table.
    PAYMENT_STORE_BACKEND = os.environ.get("PAYMENT_STORE_BACKEND", "json")
    PAYMENT_STORE_PATH = os.environ.get("PAYMENT_STORE_PATH", "payments.json")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///paywall.db"

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — temp store file, in-memory SQLite, rate limiting off."""

    TESTING = True
    DEBUG = True
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    CLIENT_URL = "http://localhost:5173"
    PAYMENT_STORE_BACKEND = "json"
    PAYMENT_STORE_PATH = "payments.test.json"  # overridden per-test with tmp_path
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
