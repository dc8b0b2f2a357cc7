import os
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables with defaults.

    Every tunable of the checker (render timeouts, per-origin throttling,
    retry policy, notification delivery) can be overridden through the
    environment or a local .env file.
    """

    # Project metadata
    PROJECT_NAME = "Price Watch"
    PROJECT_VERSION = "0.1.0"

    # Database Settings
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "3306")
    DB_NAME = os.getenv("DB_NAME", "pricewatch")
    DB_USER = os.getenv("DB_USER", "user")
    DB_PASS = os.getenv("DB_PASSWORD", "password")
    DATABASE_URL_OVERRIDE = os.getenv("DATABASE_URL")

    # Rendering
    RENDERER = os.getenv("RENDERER", "playwright")
    USER_AGENT = os.getenv(
        "PLAYWRIGHT_USER_AGENT",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    )
    PAGE_LOAD_TIMEOUT_MS = int(os.getenv("PAGE_LOAD_TIMEOUT_MS", "45000"))
    NETWORK_IDLE_TIMEOUT_MS = int(os.getenv("NETWORK_IDLE_TIMEOUT_MS", "10000"))
    SELECTOR_TIMEOUT_MS = int(os.getenv("SELECTOR_TIMEOUT_MS", "8000"))
    STOCK_SELECTOR_TIMEOUT_MS = int(os.getenv("STOCK_SELECTOR_TIMEOUT_MS", "2000"))
    CONTENT_BLOCK_DETECTION = not _env_flag("DISABLE_CONTENT_BLOCK_DETECTION")

    # Per-origin throttling
    DOMAIN_MIN_INTERVAL_MS = int(os.getenv("DOMAIN_MIN_INTERVAL_MS", "60000"))
    DOMAIN_BLOCK_COOLDOWN_MS = int(os.getenv("DOMAIN_BLOCK_COOLDOWN_MS", "7200000"))

    # Retry policy
    CHECK_MAX_ATTEMPTS = int(os.getenv("CHECK_MAX_ATTEMPTS", "3"))
    CHECK_BACKOFF_MS = int(os.getenv("CHECK_BACKOFF_MS", "5000"))

    # Scheduler
    SCHEDULER_TICK_SECONDS = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))
    SCHEDULER_ENABLED = _env_flag("SCHEDULER_ENABLED", True)

    # Notifications
    NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")
    NOTIFY_CHANNEL = os.getenv("NOTIFY_CHANNEL", "WEBHOOK")

    @property
    def DATABASE_URL(self) -> str:
        """Constructs a SQLAlchemy connection string, MySQL unless overridden."""
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


# For direct access in other modules
settings = get_settings()
