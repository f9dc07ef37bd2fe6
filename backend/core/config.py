import os
from typing import Literal, Optional
from dotenv import load_dotenv
import logging


logger = logging.getLogger(__name__)

# Load environment variables from .env file located in the parent directory.
# Environment variables explicitly set (e.g., by Docker Compose) take precedence.
BASE_DIR = os.path.dirname(os.path.dirname(__file__))
ENV_PATH = os.path.join(BASE_DIR, '.env')
load_dotenv(ENV_PATH)


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """
    Parses a boolean flag from an environment string.
    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


class Settings:
    # --- General Environment Settings ---
    ENVIRONMENT: Literal["local", "staging",
                         "production"] = os.getenv('ENVIRONMENT', 'local')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    # SERVICE_NAME identifies the process in logs and in the health endpoint.
    SERVICE_NAME: str = os.getenv('SERVICE_NAME', 'ecommerce-backend')

    # --- PostgreSQL Database Configuration ---
    POSTGRES_USER: str = os.getenv('POSTGRES_USER', 'ecommerce')
    POSTGRES_PASSWORD: str = os.getenv('POSTGRES_PASSWORD', 'ecommerce_password')
    POSTGRES_SERVER: str = os.getenv('POSTGRES_SERVER', 'postgres')
    POSTGRES_PORT: int = int(os.getenv('POSTGRES_PORT', 5432))
    POSTGRES_DB: str = os.getenv('POSTGRES_DB', 'ecommerce_events')

    # Full database URL. Takes precedence over the individual components.
    DATABASE_URL: str = os.getenv('DATABASE_URL', "")
    # Startup attempts before the database is declared unreachable.
    DB_CONNECT_RETRIES: int = int(os.getenv('DB_CONNECT_RETRIES', 5))
    DB_CONNECT_BACKOFF_MS: int = int(os.getenv('DB_CONNECT_BACKOFF_MS', 500))

    # --- Kafka Configuration ---
    # "memory://" selects the in-process channel (local runs and tests).
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'kafka:29092')
    KAFKA_CLIENT_ID: str = os.getenv('KAFKA_CLIENT_ID', 'ecommerce-backend')
    KAFKA_CONSUMER_GROUP_ID: str = os.getenv('KAFKA_CONSUMER_GROUP_ID', '')
    KAFKA_AUTO_OFFSET_RESET: str = os.getenv('KAFKA_AUTO_OFFSET_RESET', 'earliest')
    KAFKA_REQUEST_TIMEOUT_MS: int = int(os.getenv('KAFKA_REQUEST_TIMEOUT_MS', 30000))
    KAFKA_CONNECT_RETRIES: int = int(os.getenv('KAFKA_CONNECT_RETRIES', 5))
    KAFKA_CONNECT_BACKOFF_MS: int = int(os.getenv('KAFKA_CONNECT_BACKOFF_MS', 500))

    # Topics
    KAFKA_TOPIC_USER_REGISTRATION: str = os.getenv('KAFKA_TOPIC_USER_REGISTRATION', 'user-registration')
    KAFKA_TOPIC_NOTIFICATION: str = os.getenv('KAFKA_TOPIC_NOTIFICATION', 'notification-topic')
    KAFKA_TOPIC_EMAIL: str = os.getenv('KAFKA_TOPIC_EMAIL', 'email-service')
    KAFKA_TOPIC_CART_UPDATES: str = os.getenv('KAFKA_TOPIC_CART_UPDATES', 'cart-updates')
    KAFKA_TOPIC_CART_REMOVALS: str = os.getenv('KAFKA_TOPIC_CART_REMOVALS', 'cart-removals')
    KAFKA_TOPIC_ORDER_CREATED: str = os.getenv('KAFKA_TOPIC_ORDER_CREATED', 'order-created')
    KAFKA_TOPIC_PRODUCT_LOG: str = os.getenv('KAFKA_TOPIC_PRODUCT_LOG', 'product-log')
    # Empty means no dead-letter routing.
    KAFKA_DEAD_LETTER_TOPIC: str = os.getenv('KAFKA_DEAD_LETTER_TOPIC', '')

    # --- Consumer retry policy ---
    CONSUMER_MAX_ATTEMPTS: int = int(os.getenv('CONSUMER_MAX_ATTEMPTS', 3))
    CONSUMER_BACKOFF_MS: int = int(os.getenv('CONSUMER_BACKOFF_MS', 200))
    CONSUMER_MAX_BACKOFF_MS: int = int(os.getenv('CONSUMER_MAX_BACKOFF_MS', 10000))
    # Legacy "acknowledge regardless" behaviour. Off by default.
    CONSUMER_COMMIT_ON_FAILURE: bool = parse_bool(os.getenv('CONSUMER_COMMIT_ON_FAILURE'), False)

    # --- Relay behaviour ---
    # Derive outbound event ids from the consumed event id (at most one outbound per consumed event).
    RELAY_IDEMPOTENT: bool = parse_bool(os.getenv('RELAY_IDEMPOTENT'), True)

    # --- Seeding ---
    SEED_PRODUCT_COUNT: int = int(os.getenv('SEED_PRODUCT_COUNT', 25))

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """
        Constructs the SQLAlchemy database URI.
        A full DATABASE_URL wins over the individual POSTGRES_* components.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def dead_letter_topic(self) -> Optional[str]:
        return self.KAFKA_DEAD_LETTER_TOPIC or None

    def consumer_group_for(self, relay_name: str) -> str:
        """Consumer group for a relay worker; KAFKA_CONSUMER_GROUP_ID overrides the default."""
        return self.KAFKA_CONSUMER_GROUP_ID or f"{relay_name}-service-group"


# Instantiate the settings object to be used throughout the application
settings = Settings()
