"""Configuration module for the Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _int_list(value: str):
    return tuple(int(p) for p in value.split(',') if p.strip())


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'mrp')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'mrp')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'mrp')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Stock ledger
    LEDGER_MAX_RETRIES = int(os.getenv('LEDGER_MAX_RETRIES', '3'))  # compare-and-swap attempts

    # Inventory analysis
    ABC_CLASS_A_THRESHOLD = os.getenv('ABC_CLASS_A_THRESHOLD', '80')  # cumulative %
    ABC_CLASS_B_THRESHOLD = os.getenv('ABC_CLASS_B_THRESHOLD', '95')
    AGING_DEFAULT_PERIODS = _int_list(os.getenv('AGING_DEFAULT_PERIODS', '30,60,90'))

    # Redis Cache Configuration (valuation and ABC reports)
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'mrp')

    # Error tracking (production only)
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestConfig(Config):
    """In-memory SQLite, no Redis."""
    TESTING = True
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False
    SENTRY_DSN = None
    LOG_LEVEL = 'WARNING'
