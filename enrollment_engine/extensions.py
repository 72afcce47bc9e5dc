# extensions.py
"""
Flask extensions initialization.
Extensions are created here without an app and bound to it in the application factory,
which keeps models and services free of circular imports.
"""

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect
from flask_login import LoginManager

from enrollment_engine.utils.enhanced_email import EnhancedEmailService
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
import time
import logging
import threading

# Initialize extensions without app binding
db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()
login_manager = LoginManager()
email_service = EnhancedEmailService()

# Connection monitoring
connection_stats = {
    'total_connections': 0,
    'failed_connections': 0,
    'last_check': 0,
    'healthy': True
}
connection_lock = threading.Lock()

logger = logging.getLogger(__name__)

# MySQL "server has gone away" / lost connection codes
MYSQL_RECONNECT_CODES = (2006, 2013, 2014, 2045, 2055)


def add_connection_retry(engine, retries=3, delay=1):
    """
    Add retry mechanism for database connections.

    Args:
        engine: SQLAlchemy engine instance
        retries (int): Number of retry attempts
        delay (int): Initial delay between retries in seconds
    """

    @event.listens_for(engine, "engine_connect")
    def ping_connection(connection):
        try:
            connection.execute(text("SELECT 1"))
            with connection_lock:
                connection_stats['total_connections'] += 1
                connection_stats['healthy'] = True

        except OperationalError as err:
            if getattr(err.orig, 'args', None) and err.orig.args[0] in MYSQL_RECONNECT_CODES:
                logger.warning(f"Database connection error: {err}. Attempting to reconnect...")

                with connection_lock:
                    connection_stats['failed_connections'] += 1

                for attempt in range(retries):
                    try:
                        time.sleep(delay * (attempt + 1))
                        connection.execute(text("SELECT 1"))
                        logger.info("Database reconnected successfully")

                        with connection_lock:
                            connection_stats['healthy'] = True
                        break
                    except OperationalError:
                        if attempt == retries - 1:
                            logger.error("Failed to reconnect to database after multiple attempts")
                            with connection_lock:
                                connection_stats['healthy'] = False
                            raise
            else:
                raise


def enable_sqlite_immediate_transactions(engine):
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two writers can both read the
    enrollment count before either takes the write lock. With BEGIN IMMEDIATE the
    second writer waits on the database lock, the same way it waits on the class
    row lock under PostgreSQL or MySQL.

    Args:
        engine: SQLAlchemy engine bound to a SQLite database
    """

    @event.listens_for(engine, "connect")
    def disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def get_connection_stats():
    """
    Get current database connection statistics.

    Returns:
        dict: Connection statistics
    """
    with connection_lock:
        return connection_stats.copy()


def check_database_health():
    """
    Check if the database connection is healthy.
    This function requires an active Flask application context.

    Returns:
        tuple: (bool, str) indicating health status and message
    """
    try:
        connection = db.engine.connect()
        try:
            connection.execute(text("SELECT 1")).fetchone()

            with connection_lock:
                connection_stats['healthy'] = True
                connection_stats['last_check'] = time.time()

            return True, "Database connection is healthy"
        finally:
            connection.close()

    except Exception as e:
        logger.error(f"Database health check failed: {e}")

        with connection_lock:
            connection_stats['healthy'] = False
            connection_stats['last_check'] = time.time()

        return False, f"Database connection failed: {str(e)}"


def init_extensions(app):
    """
    Initialize all extensions with proper order and configuration.

    Args:
        app: Flask application instance
    """
    # Step 1: Initialize database first (required by other extensions)
    db.init_app(app)
    migrate.init_app(app, db)

    # Step 2: Initialize Flask-Login
    login_manager.init_app(app)
    login_manager.session_protection = 'basic'

    # Step 3: Initialize CSRF protection
    csrf.init_app(app)

    # Step 4: Initialize email service
    email_service.init_app(app)

    # Step 5: Engine listeners
    with app.app_context():
        uri = app.config.get('SQLALCHEMY_DATABASE_URI') or ''
        if uri.startswith('mysql'):
            add_connection_retry(
                db.engine,
                retries=app.config.get('DB_CONNECTION_RETRIES', 3),
                delay=app.config.get('DB_RETRY_DELAY', 2)
            )
            app.logger.info(f"Initialized MySQL connection with retry mechanism. "
                            f"Retries: {app.config.get('DB_CONNECTION_RETRIES', 3)}, "
                            f"Delay: {app.config.get('DB_RETRY_DELAY', 2)}s")
        elif uri.startswith('sqlite') and app.config.get('SQLITE_BEGIN_IMMEDIATE'):
            enable_sqlite_immediate_transactions(db.engine)
            app.logger.info("SQLite transactions will use BEGIN IMMEDIATE")

    # Step 6: Define user_loader callback
    @login_manager.user_loader
    def load_user(user_id):
        from enrollment_engine.models import User
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        from flask import jsonify
        return jsonify({'error': 'Authentication required'}), 401

    app.logger.info("Extensions initialized successfully in correct order")


def validate_email_config(app):
    """
    Validate email configuration on startup.

    Args:
        app: Flask application instance

    Returns:
        list: List of configuration issues found
    """
    issues = []

    if app.config.get('MAIL_SUPPRESS_SEND'):
        issues.append("MAIL_SUPPRESS_SEND=True will prevent email sending")

    required = ['MAIL_SERVER', 'MAIL_USERNAME', 'MAIL_PASSWORD', 'MAIL_DEFAULT_SENDER']
    missing = [key for key in required if not app.config.get(key)]
    if missing:
        issues.append(f"Missing required email config: {', '.join(missing)}")

    mail_port = app.config.get('MAIL_PORT')
    use_tls = app.config.get('MAIL_USE_TLS', False)
    use_ssl = app.config.get('MAIL_USE_SSL', False)

    if use_tls and use_ssl:
        issues.append("Cannot use both MAIL_USE_TLS and MAIL_USE_SSL simultaneously")

    if mail_port == 465 and use_tls and not use_ssl:
        issues.append("Port 465 typically uses SSL, not TLS. Consider using port 587 for TLS")
    elif mail_port == 587 and use_ssl and not use_tls:
        issues.append("Port 587 typically uses TLS, not SSL. Consider using port 465 for SSL")

    return issues


def start_database_health_monitor(app, interval=300):
    """
    Start a background thread to monitor database health.

    Args:
        app: Flask application instance
        interval (int): Health check interval in seconds
    """

    def monitor():
        while True:
            try:
                with app.app_context():
                    healthy, message = check_database_health()
                    if not healthy:
                        logger.warning(f"Database health monitor: {message}")
            except Exception as e:
                logger.error(f"Database health monitor error: {e}")
            time.sleep(interval)

    if app.config.get('ENABLE_DB_HEALTH_MONITOR', False):
        monitor_thread = threading.Thread(target=monitor, daemon=True, name="DatabaseHealthMonitor")
        monitor_thread.start()
        logger.info("Started database health monitor thread")
