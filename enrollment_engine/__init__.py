# __init__.py
"""
Application factory for the enrollment and attendance engine.
This module creates and configures the Flask application using the application factory pattern.
"""

import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from enrollment_engine.config import config_by_name
from enrollment_engine.extensions import (
    init_extensions, validate_email_config, start_database_health_monitor, db, email_service
)


def setup_logging(app):
    """
    Configure structured logging for the application.

    Args:
        app: Flask application instance
    """
    log_format = logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s'
    )
    level = logging.DEBUG if app.debug else logging.INFO

    # Service loggers are named after their module ('enrollment_service', ...),
    # so handlers go on the root logger
    root = logging.getLogger()
    root.setLevel(level)

    if not app.testing:
        log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, 'logs')
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'app.log'),
            maxBytes=1024 * 1024 * 10,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(log_format)
        file_handler.setLevel(logging.INFO)
        root.addHandler(file_handler)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(log_format)
        console_handler.setLevel(level)
        root.addHandler(console_handler)

    logging.getLogger('enrollment_service').setLevel(logging.DEBUG)

    sa_logger = logging.getLogger('sqlalchemy.engine')
    sa_logger.setLevel(logging.WARNING)
    sa_logger.propagate = False


def register_blueprints(app):
    """
    Register all application blueprints.

    Args:
        app: Flask application instance
    """
    try:
        from .controllers.enrollment import enrollment_bp
        from .controllers.attendance import attendance_bp
        from .controllers.eligibility import eligibility_bp
        from .controllers.notifications import notifications_bp

        app.register_blueprint(enrollment_bp, url_prefix='/api')
        app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
        app.register_blueprint(eligibility_bp, url_prefix='/api/eligibility')
        app.register_blueprint(notifications_bp, url_prefix='/api/notifications')

        app.logger.info("All blueprints registered successfully")

    except ImportError as e:
        app.logger.error(f"Failed to import blueprint: {str(e)}")
        raise


def register_error_handlers(app):
    """
    Register global error handlers.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'error': e.name, 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        db.session.rollback()
        app.logger.error(f"Unhandled exception: {str(e)}", exc_info=True)
        return jsonify({
            'error': 'An unexpected error occurred',
            'message': str(e) if app.debug else 'Internal server error'
        }), 500


def register_shell_context(app):
    """
    Register shell context for flask shell command.

    Args:
        app: Flask application instance
    """

    @app.shell_context_processor
    def make_shell_context():
        from .models import (
            User, Role, Event, CourseClass, ClassSession, Enrollment, Attendance, Notification
        )
        return {
            'db': db,
            'User': User,
            'Role': Role,
            'Event': Event,
            'CourseClass': CourseClass,
            'ClassSession': ClassSession,
            'Enrollment': Enrollment,
            'Attendance': Attendance,
            'Notification': Notification,
            'email_service': email_service
        }


def register_health_checks(app):
    """
    Register health check endpoints.

    Args:
        app: Flask application instance
    """

    @app.route('/health')
    def health_check():
        """Basic health check endpoint."""
        return jsonify({
            'status': 'ok',
            'timestamp': datetime.now().isoformat(),
            'version': app.config.get('VERSION', '1.0.0')
        })

    @app.route('/health/email')
    def email_health_check():
        """Email service health check endpoint."""
        try:
            config_issues = validate_email_config(app)
            stats = email_service.get_queue_stats()

            if app.config.get('MAIL_SUPPRESS_SEND'):
                status = 'suppressed'
            elif not config_issues and stats['worker_alive']:
                status = 'healthy'
            else:
                status = 'degraded'

            return jsonify({
                'status': status,
                'config_issues': config_issues,
                'worker_thread': 'running' if stats['worker_alive'] else 'stopped',
                'queue_size': stats['queue_size'],
                'timestamp': datetime.now().isoformat()
            })

        except Exception as e:
            app.logger.error(f"Email health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }), 503

    @app.route('/health/database')
    def database_health_check():
        """Database health check endpoint."""
        from enrollment_engine.extensions import check_database_health, get_connection_stats

        healthy, message = check_database_health()
        stats = get_connection_stats()

        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'message': message,
            'stats': stats,
            'timestamp': datetime.now().isoformat()
        }), 200 if healthy else 503


def create_app(config_name=None):
    """
    Application factory function.

    Args:
        config_name (str): Configuration name ('development', 'production', 'testing')

    Returns:
        Flask: Configured Flask application instance
    """
    load_dotenv()

    app = Flask(__name__)

    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    config_class = config_by_name[config_name]
    app.config.from_object(config_class)
    config_class.init_app(app)

    setup_logging(app)
    app.logger.info(f"Starting application with config: {config_name}")

    init_extensions(app)

    with app.app_context():
        start_database_health_monitor(app, interval=app.config.get('DB_HEALTH_CHECK_INTERVAL', 300))

    email_issues = validate_email_config(app)
    if email_issues:
        app.logger.warning(f"Email configuration issues: {'; '.join(email_issues)}")
    else:
        app.logger.info("Email configuration validated successfully")

    register_blueprints(app)
    register_error_handlers(app)
    register_shell_context(app)
    register_health_checks(app)

    from .cli import register_cli_commands
    register_cli_commands(app)

    app.logger.info("Application factory completed successfully")

    return app
