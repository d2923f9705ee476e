import os
import logging
from datetime import timedelta


def _env_flag(name, default):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class BaseConfig:
    """
    Base configuration class using environment variables
    """

    # Application settings
    APP_NAME = os.environ.get('APP_NAME', 'Studio Manager')

    # Secret Key
    SECRET_KEY = os.environ.get('SECRET_KEY', 'fallback-secret-key-for-development')

    # Security settings
    SESSION_COOKIE_SECURE = _env_flag('SESSION_COOKIE_SECURE', 'true')
    SESSION_COOKIE_HTTPONLY = _env_flag('SESSION_COOKIE_HTTPONLY', 'true')
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    REMEMBER_COOKIE_DURATION = timedelta(days=14)
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:5173').split(',')

    # Logging Configuration
    LOG_TO_STDOUT = _env_flag('LOG_TO_STDOUT', 'false')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    SLOW_QUERY_THRESHOLD = float(os.environ.get('SLOW_QUERY_THRESHOLD', 0.5))

    # Login Settings
    PASSWORD_MIN_LENGTH = int(os.environ.get('PASSWORD_MIN_LENGTH', 8))

    # Studio rules
    CURRENCY = os.environ.get('CURRENCY', 'AED')
    CANCELLATION_WINDOW_HOURS = int(os.environ.get('CANCELLATION_WINDOW_HOURS', 24))
    # 'on_completion' or 'on_booking'
    PACKAGE_DEDUCTION_POLICY = os.environ.get('PACKAGE_DEDUCTION_POLICY', 'on_completion')
    LEDGER_COUNT_PENDING_CHARGES = _env_flag('LEDGER_COUNT_PENDING_CHARGES', 'true')
    PACKAGE_EXPIRY_WARNING_DAYS = int(os.environ.get('PACKAGE_EXPIRY_WARNING_DAYS', 14))
    LOW_SESSIONS_THRESHOLD = int(os.environ.get('LOW_SESSIONS_THRESHOLD', 3))

    # Invoices
    INVOICE_PREFIX = os.environ.get('INVOICE_PREFIX', 'INV-')
    INVOICE_NUMBER_WIDTH = int(os.environ.get('INVOICE_NUMBER_WIDTH', 4))
    DEFAULT_PAYMENT_TERMS = int(os.environ.get('DEFAULT_PAYMENT_TERMS', 30))

    # Transactional email
    EMAIL_API_URL = os.environ.get('EMAIL_API_URL')
    EMAIL_API_KEY = os.environ.get('EMAIL_API_KEY')
    EMAIL_FROM = os.environ.get('EMAIL_FROM', 'Studio Manager <notifications@example.com>')
    EMAIL_TIMEOUT = float(os.environ.get('EMAIL_TIMEOUT', 10))
    EMAIL_RETRY_TRIES = int(os.environ.get('EMAIL_RETRY_TRIES', 3))
    EMAIL_ASYNC = _env_flag('EMAIL_ASYNC', 'true')

    @classmethod
    def init_app(cls, app):
        """
        Configure logging and other app-specific initialization.
        :param app: Flask application instance
        """
        app.logger.setLevel(cls.LOG_LEVEL)
        app.logger.info(f"{cls.APP_NAME} initialized with {cls.__name__}")

        app.logger.debug(f"Configuration Loaded: {cls.__name__}")
        app.logger.debug(f"PACKAGE_DEDUCTION_POLICY: {cls.PACKAGE_DEDUCTION_POLICY}")
        app.logger.debug(f"CANCELLATION_WINDOW_HOURS: {cls.CANCELLATION_WINDOW_HOURS}")
        app.logger.debug(f"LOG_LEVEL: {cls.LOG_LEVEL}")


class DatabaseConfig:
    """
    Database configuration with environment variable support
    """
    # SQLAlchemy Settings
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Connection Pool Settings
    SQLALCHEMY_POOL_SIZE = int(os.environ.get('DATABASE_POOL_SIZE', 10))
    SQLALCHEMY_MAX_OVERFLOW = int(os.environ.get('DATABASE_MAX_OVERFLOW', 20))
    SQLALCHEMY_POOL_TIMEOUT = int(os.environ.get('DATABASE_POOL_TIMEOUT', 30))
    SQLALCHEMY_POOL_RECYCLE = int(os.environ.get('DATABASE_POOL_RECYCLE', 1800))  # 30 minutes

    # Per-statement limit on PostgreSQL, in milliseconds
    DATABASE_STATEMENT_TIMEOUT_MS = int(os.environ.get('DATABASE_STATEMENT_TIMEOUT_MS', 15000))

    SQLALCHEMY_ECHO = _env_flag('SQLALCHEMY_ECHO', 'false')
    SQLALCHEMY_RECORD_QUERIES = _env_flag('SQLALCHEMY_RECORD_QUERIES', 'false')

    @staticmethod
    def get_database_uri(config_name):
        """
        Generate database URI based on configuration environment

        Args:
            config_name: Name of the configuration environment
        Returns:
            str: Database connection URI
        """
        # For testing, always use in-memory SQLite
        if config_name == 'testing':
            return 'sqlite:///:memory:'

        db_url = os.environ.get('DATABASE_URL')
        if db_url:
            # Hosted Postgres providers still hand out the old scheme
            if db_url.startswith('postgres://'):
                db_url = db_url.replace('postgres://', 'postgresql://', 1)
            return db_url

        db_user = os.environ.get('DATABASE_USER')
        db_password = os.environ.get('DATABASE_PASSWORD')
        db_host = os.environ.get('DATABASE_HOST', 'localhost')
        db_port = os.environ.get('DATABASE_PORT', '5432')
        db_name = os.environ.get('DATABASE_NAME', 'studio_manager')

        if all([db_user, db_password, db_host, db_name]):
            return f'postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}'

        # Fallback to SQLite
        default_db_path = os.path.join(
            os.path.abspath(os.path.dirname(__file__)),
            '..',
            'studio_manager.db'
        )
        return f'sqlite:///{os.path.normpath(default_db_path)}'

    @staticmethod
    def init_db(app):
        """
        Log database connection details (excluding credentials)

        Args:
            app: Flask application instance
        """
        db_host = os.environ.get('DATABASE_HOST', 'localhost')
        db_name = os.environ.get('DATABASE_NAME', 'studio_manager')
        app.logger.info(f"Connecting to database: {db_name} on {db_host}")

        app.logger.debug(f"Pool Size: {DatabaseConfig.SQLALCHEMY_POOL_SIZE}")
        app.logger.debug(f"Max Overflow: {DatabaseConfig.SQLALCHEMY_MAX_OVERFLOW}")
        app.logger.debug(f"Pool Recycle: {DatabaseConfig.SQLALCHEMY_POOL_RECYCLE}")


class DevelopmentConfig(BaseConfig, DatabaseConfig):
    """
    Development-specific configuration
    """
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    SQLALCHEMY_DATABASE_URI = DatabaseConfig.get_database_uri('development')


class ProductionConfig(BaseConfig, DatabaseConfig):
    """
    Production-specific configuration
    """
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = DatabaseConfig.get_database_uri('production')


class TestingConfig(BaseConfig, DatabaseConfig):
    """
    Testing-specific configuration
    """
    TESTING = True
    SESSION_COOKIE_SECURE = False
    LOG_LEVEL = logging.getLevelName(logging.WARNING)
    EMAIL_ASYNC = False
    EMAIL_API_URL = None
    EMAIL_RETRY_TRIES = 1
    SQLALCHEMY_DATABASE_URI = DatabaseConfig.get_database_uri('testing')


def get_config(config_name):
    """
    Factory function to return the appropriate configuration class

    :param config_name: Name of the configuration ('development', 'production', 'testing')
    :return: Configuration class
    """
    config_mapping = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'testing': TestingConfig
    }

    return config_mapping.get((config_name or 'development').lower(), DevelopmentConfig)
