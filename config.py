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
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    SENTRY_DSN = os.getenv('SENTRY_DSN')

    # Request context: acting user comes from X-User-Id / session
    ALLOW_ANONYMOUS = os.getenv('ALLOW_ANONYMOUS', 'true').lower() == 'true'

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'almacen')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'almacen')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'almacen')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    AUTO_CREATE_TABLES = os.getenv('AUTO_CREATE_TABLES', 'false').lower() == 'true'

    # Stock alerts
    ALMOST_OUT_FACTOR = float(os.getenv('ALMOST_OUT_FACTOR', '1.1'))  # +10% over minimum
    ALERT_EMAIL_TO = os.getenv('ALERT_EMAIL_TO', '')

    # Product defaults
    DEFAULT_UNIT = os.getenv('DEFAULT_UNIT', 'pza')
    DEFAULT_DEPARTMENT = os.getenv('DEFAULT_DEPARTMENT', 'electronica')
    IMPORT_DEFAULT_DEPARTMENT = os.getenv('IMPORT_DEFAULT_DEPARTMENT', 'otros')

    # Reports
    REPORT_DEFAULT_DAYS = int(os.getenv('REPORT_DEFAULT_DAYS', '30'))
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Almacén')

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
    MAIL_SUPPRESS_SEND = False

    # Object Storage Configuration (MinIO/S3)
    S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://minio:9000')
    S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minioadmin')
    S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minioadmin')
    S3_BUCKET = os.getenv('S3_BUCKET', 'uploads')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')

    # Excel import source
    EXCEL_OBJECT_NAME = os.getenv('EXCEL_OBJECT_NAME', 'inventario/inventario.xlsx')
    EXCEL_DOWNLOAD_TIMEOUT = int(os.getenv('EXCEL_DOWNLOAD_TIMEOUT', '30'))
    MAX_IMPORT_SIZE = int(os.getenv('MAX_IMPORT_SIZE', 10 * 1024 * 1024))  # 10MB
    # Comma-separated hosts a workbook URL may point at; empty disables URL imports
    IMPORT_ALLOWED_HOSTS = [
        h.strip().lower() for h in os.getenv('IMPORT_ALLOWED_HOSTS', '').split(',') if h.strip()
    ]

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_PRODUCTS_TTL = int(os.getenv('CACHE_PRODUCTS_TTL', '60'))
    CACHE_REPORTS_TTL = int(os.getenv('CACHE_REPORTS_TTL', '120'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'almacen')


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite, no externals)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ECHO = False
    AUTO_CREATE_TABLES = True
    CACHE_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    ALERT_EMAIL_TO = 'almacen@test.com'
    ALLOW_ANONYMOUS = True
    SENTRY_DSN = None
    S3_ENDPOINT = 'http://localhost:9000'
    IMPORT_ALLOWED_HOSTS = ['files.example.com']
