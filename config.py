"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'stockflow')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'stockflow')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'stockflow')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Email configuration (billing notifications)
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
    MAIL_SUPPRESS_SEND = False

    # Frontend (checkout redirect and email links)
    FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:5173')

    # Wompi payment gateway
    # Keys prefixed pub_prod_/prv_prod_ select the production API, anything else the sandbox
    WOMPI_PUBLIC_KEY = os.getenv('WOMPI_PUBLIC_KEY', '')
    WOMPI_PRIVATE_KEY = os.getenv('WOMPI_PRIVATE_KEY', '')
    WOMPI_EVENT_SECRET = os.getenv('WOMPI_EVENT_SECRET', '')
    WOMPI_INTEGRITY_SECRET = os.getenv('WOMPI_INTEGRITY_SECRET', '')
    WOMPI_BASE_URL = os.getenv('WOMPI_BASE_URL') or None
    WOMPI_TIMEOUT_SECONDS = int(os.getenv('WOMPI_TIMEOUT_SECONDS', '15'))
    WOMPI_MERCHANT_CACHE_TTL = int(os.getenv('WOMPI_MERCHANT_CACHE_TTL', '300'))  # seconds

    # Billing
    BILLING_CURRENCY = os.getenv('BILLING_CURRENCY', 'COP')
    RECURRING_BILLING_LOOKAHEAD_DAYS = int(os.getenv('RECURRING_BILLING_LOOKAHEAD_DAYS', '3'))
    RECURRING_BILLING_LOOKBACK_DAYS = int(os.getenv('RECURRING_BILLING_LOOKBACK_DAYS', '7'))


class TestingConfig(Config):
    """In-memory database, no CSRF, no outgoing mail."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = 'billing@stockflow.test'
    FRONTEND_URL = 'http://frontend.test'

    WOMPI_PUBLIC_KEY = 'pub_test_key'
    WOMPI_PRIVATE_KEY = 'prv_test_key'
    WOMPI_EVENT_SECRET = 'test_events_secret'
    WOMPI_INTEGRITY_SECRET = 'test_integrity_secret'
    WOMPI_BASE_URL = None
