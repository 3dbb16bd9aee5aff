"""Configuration module for Flask application."""
import os
import tempfile
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (shared with the accounts service)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # JSON clients send the token in the X-CSRFToken header
    WTF_CSRF_ENABLED = os.getenv('WTF_CSRF_ENABLED', 'true').lower() == 'true'
    WTF_CSRF_TIME_LIMIT = None

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'storefront')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'storefront')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'storefront')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    DB_CREATE_ALL = os.getenv('DB_CREATE_ALL', 'false').lower() == 'true'

    # Checkout pricing
    TAX_RATE = os.getenv('TAX_RATE', '0.10')
    SHIPPING_FEE = os.getenv('SHIPPING_FEE', '5.00')

    # Discount codes (storefront admin endpoint rules)
    DISCOUNT_CODE_LENGTH = int(os.getenv('DISCOUNT_CODE_LENGTH', '5'))
    DISCOUNT_MAX_USAGE_LIMIT = int(os.getenv('DISCOUNT_MAX_USAGE_LIMIT', '10'))
    DISCOUNT_DEFAULT_USAGE_LIMIT = int(os.getenv('DISCOUNT_DEFAULT_USAGE_LIMIT', '10'))
    BULK_DISCOUNT_MAX_COUNT = int(os.getenv('BULK_DISCOUNT_MAX_COUNT', '100'))
    BULK_DISCOUNT_DEFAULT_DAYS = int(os.getenv('BULK_DISCOUNT_DEFAULT_DAYS', '30'))

    # Loyalty program (loaded once at startup, see loyalty_service.init_loyalty)
    LOYALTY_ACTIVE = os.getenv('LOYALTY_ACTIVE', 'true').lower() == 'true'
    LOYALTY_POINTS_PER_DOLLAR = os.getenv('LOYALTY_POINTS_PER_DOLLAR', '1')
    LOYALTY_POINT_VALUE = os.getenv('LOYALTY_POINT_VALUE', '0.01')  # dollars per point
    LOYALTY_TIERS = os.getenv('LOYALTY_TIERS')  # JSON list, None = built-in tiers
    PENDING_POINTS_TTL_MINUTES = int(os.getenv('PENDING_POINTS_TTL_MINUTES', '30'))

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'
    ORDER_EMAIL_ASYNC = os.getenv('ORDER_EMAIL_ASYNC', 'true').lower() == 'true'
    STORE_NAME = os.getenv('STORE_NAME', 'Storefront')

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_LOYALTY_TTL = int(os.getenv('CACHE_LOYALTY_TTL', '60'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'storefront')


class TestingConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    DEBUG = False
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'TEST_DATABASE_URL',
        'sqlite:///' + os.path.join(tempfile.gettempdir(), 'storefront-test.db')
    )
    SQLALCHEMY_ECHO = False
    DB_CREATE_ALL = True
    CACHE_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    ORDER_EMAIL_ASYNC = False
    TAX_RATE = '0.10'
    SHIPPING_FEE = '5.00'
    DISCOUNT_CODE_LENGTH = 5
    DISCOUNT_MAX_USAGE_LIMIT = 10
    LOYALTY_ACTIVE = True
    LOYALTY_POINTS_PER_DOLLAR = '1'
    LOYALTY_POINT_VALUE = '0.01'
    LOYALTY_TIERS = None
    PENDING_POINTS_TTL_MINUTES = 30
