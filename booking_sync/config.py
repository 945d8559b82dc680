import os


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Stripe (payments) ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Accepted alongside the primary secret while rolling the endpoint secret.
    STRIPE_WEBHOOK_SECRET_SECONDARY = os.environ.get("STRIPE_WEBHOOK_SECRET_SECONDARY")

    # --- Calendly (scheduling) ---
    CALENDLY_WEBHOOK_SIGNING_KEY = os.environ.get("CALENDLY_WEBHOOK_SIGNING_KEY")
    CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY = os.environ.get(
        "CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY"
    )
    # Personal access token; used to fetch scheduled events a webhook only references.
    CALENDLY_API_TOKEN = os.environ.get("CALENDLY_API_TOKEN")

    # --- Webhook processing ---
    # Max age of a signed webhook, in seconds (replay window).
    WEBHOOK_TOLERANCE_SECONDS = int(os.environ.get("WEBHOOK_TOLERANCE_SECONDS", 300))
    # Wall-clock budget for one reconciliation unit before we refuse to commit.
    WEBHOOK_PROCESSING_BUDGET_SECONDS = float(
        os.environ.get("WEBHOOK_PROCESSING_BUDGET_SECONDS", 10)
    )

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")
    BOOKING_CURRENCY = os.environ.get("BOOKING_CURRENCY", "usd")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Buildappswith")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME
    # Log instead of talking to SMTP (local development, tests).
    MAIL_SUPPRESS_SEND = _env_flag("MAIL_SUPPRESS_SEND")
    # When False, notification commands are queued but not sent until
    # `flask dispatch-notifications` runs.
    NOTIFICATIONS_DISPATCH_INLINE = not _env_flag("NOTIFICATIONS_DEFERRED")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting (Flask-Limiter) ---
    # Use a shared store (e.g. redis://) when running more than one worker.
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "CALENDLY_WEBHOOK_SIGNING_KEY",
            "APP_BASE_URL",
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
    """Testing — in-memory SQLite, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_WEBHOOK_SECRET_SECONDARY = None
    CALENDLY_WEBHOOK_SIGNING_KEY = "calendly_test_signing_key"
    CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY = None
    APP_BASE_URL = "http://localhost:5000"
    NOTIFICATIONS_DISPATCH_INLINE = True
    WTF_CSRF_ENABLED = False  # disable CSRF for test forms
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    MAIL_SUPPRESS_SEND = True
    SERVER_NAME = "localhost"

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
