import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class with all settings as static attributes."""

    # Core configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me-in-development'
    DEBUG = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    VERSION = '1.0.0'

    # Session cookies
    PERMANENT_SESSION_LIFETIME = timedelta(hours=2)
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # MySQL connection timeouts
    MYSQL_CONNECT_TIMEOUT = 30
    MYSQL_READ_TIMEOUT = 30
    MYSQL_WRITE_TIMEOUT = 30

    # Database configuration
    base_db_uri = os.environ.get('DATABASE_URL') or 'sqlite:///enrollment.db'

    if base_db_uri.startswith('mysql'):
        # PyMySQL specific parameters go in the query string
        from urllib.parse import urlparse, urlunparse
        parsed = urlparse(base_db_uri)

        query_params = {
            'charset': 'utf8mb4',
            'connect_timeout': str(MYSQL_CONNECT_TIMEOUT),
            'read_timeout': str(MYSQL_READ_TIMEOUT),
            'write_timeout': str(MYSQL_WRITE_TIMEOUT),
        }

        query_string = '&'.join([f"{k}={v}" for k, v in query_params.items()])
        new_query = f"{parsed.query}&{query_string}" if parsed.query else query_string

        SQLALCHEMY_DATABASE_URI = urlunparse((
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            new_query,
            parsed.fragment
        ))
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_recycle": 3600,
            "pool_pre_ping": True,
            "pool_size": 10,
            "max_overflow": 20,
        }
    else:
        SQLALCHEMY_DATABASE_URI = base_db_uri
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_pre_ping": True,
        }

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Serialize SQLite writers (development databases only)
    SQLITE_BEGIN_IMMEDIATE = True

    # Connection retry settings
    DB_CONNECTION_RETRIES = 3
    DB_RETRY_DELAY = 2  # seconds

    # Health monitoring
    ENABLE_DB_HEALTH_MONITOR = os.environ.get('ENABLE_DB_HEALTH_MONITOR', 'false').lower() == 'true'
    DB_HEALTH_CHECK_INTERVAL = 300  # 5 minutes

    # Directory configuration
    BASE_DIR = os.path.dirname(os.path.abspath(__file__))
    QR_CODE_FOLDER = os.environ.get('QR_CODE_FOLDER') or os.path.join(BASE_DIR, 'static', 'qrcodes')
    EXPORT_FOLDER = os.environ.get('EXPORT_FOLDER') or os.path.join(BASE_DIR, 'exports')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(BASE_DIR, 'logs')
    ALLOWED_EXTENSIONS = {'csv', 'xlsx', 'xls'}

    # Site settings
    SITE_NAME = os.environ.get('SITE_NAME', 'Course Enrollment')
    CONTACT_EMAIL = os.environ.get('CONTACT_EMAIL', 'support@example.com')
    BASE_URL = os.environ.get('BASE_URL', 'http://localhost:5000')

    # Eligibility
    ATTENDANCE_THRESHOLD = float(os.environ.get('ATTENDANCE_THRESHOLD', 0.75))

    # Attendance confirmation windows
    SELF_CONFIRM_LEAD_MINUTES = int(os.environ.get('SELF_CONFIRM_LEAD_MINUTES', 30))
    INSTRUCTOR_CONFIRM_WINDOW_HOURS = int(os.environ.get('INSTRUCTOR_CONFIRM_WINDOW_HOURS', 48))
    ADMIN_BACKFILL_WINDOW_DAYS = int(os.environ.get('ADMIN_BACKFILL_WINDOW_DAYS', 60))

    # Signed attendance tokens (QR check-in)
    ATTENDANCE_TOKEN_SALT = 'attendance-confirmation'
    ATTENDANCE_TOKEN_MAX_AGE = int(os.environ.get('ATTENDANCE_TOKEN_MAX_AGE', 300))  # seconds

    # Enrollment policy
    ALLOW_CANCEL_WITH_ATTENDANCE = os.environ.get('ALLOW_CANCEL_WITH_ATTENDANCE', 'true').lower() == 'true'

    # Email configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.gmail.com')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', 465))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', 'false').lower() == 'true'
    MAIL_USE_SSL = os.environ.get('MAIL_USE_SSL', 'true').lower() == 'true'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'Course Enrollment <no-reply@example.com>')
    MAIL_SUPPRESS_SEND = os.environ.get('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'
    # Delivery statuses kept in memory for /health/email
    EMAIL_STATUS_HISTORY = int(os.environ.get('EMAIL_STATUS_HISTORY', 500))

    @staticmethod
    def init_app(app):
        pass

    @staticmethod
    def allowed_file(filename):
        """Check if a sheet upload has an accepted extension."""
        if not filename or '.' not in filename:
            return False
        return filename.rsplit('.', 1)[1].lower() in Config.ALLOWED_EXTENSIONS


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    SQLALCHEMY_ECHO = os.environ.get('SQL_DEBUG', 'false').lower() == 'true'
    MAIL_SUPPRESS_SEND = os.environ.get('MAIL_SUPPRESS_SEND', 'true').lower() == 'true'


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    SQLITE_BEGIN_IMMEDIATE = False
    ENABLE_DB_HEALTH_MONITOR = True

    @staticmethod
    def init_app(app):
        # Ensure secrets are set in production
        if not os.environ.get('SECRET_KEY'):
            raise ValueError("SECRET_KEY environment variable must be set in production")
        if not os.environ.get('DATABASE_URL'):
            raise ValueError("DATABASE_URL environment variable must be set in production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SQLITE_BEGIN_IMMEDIATE = False
    WTF_CSRF_ENABLED = False
    SESSION_COOKIE_SECURE = False
    ENABLE_DB_HEALTH_MONITOR = False

    MAIL_SUPPRESS_SEND = True
    MAIL_USERNAME = 'test@example.com'
    MAIL_PASSWORD = 'test-password'


# Configuration dictionary
config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}
