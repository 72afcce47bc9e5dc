# app.py
"""
Main application entry point.
This module creates the Flask application instance and handles application startup.
"""

import os
import logging
from logging.handlers import SysLogHandler

from enrollment_engine import create_app
from enrollment_engine.extensions import email_service


def create_application():
    """
    Create and configure the Flask application.

    Returns:
        Flask: Configured application instance
    """
    config_name = os.environ.get('FLASK_ENV', 'development')

    app = create_app(config_name)

    if config_name == 'production':
        setup_production_features(app)

    return app


def setup_production_features(app):
    """
    Setup production-specific features.

    Args:
        app: Flask application instance
    """
    # gunicorn forks after import; make sure the worker runs in this process
    if not app.config.get('MAIL_SUPPRESS_SEND') and \
            (not email_service.worker_thread or not email_service.worker_thread.is_alive()):
        email_service.start_worker()
        app.logger.info("Email service worker restarted for production")

    if app.config.get('SYSLOG_SERVER'):
        syslog_handler = SysLogHandler(address=app.config['SYSLOG_SERVER'])
        syslog_handler.setLevel(logging.ERROR)
        app.logger.addHandler(syslog_handler)

    for directory in (app.config.get('QR_CODE_FOLDER'), app.config.get('EXPORT_FOLDER')):
        if directory:
            os.makedirs(directory, exist_ok=True)

    app.logger.info("Production features configured")


app = create_application()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_ENV') == 'development'

    app.logger.info(f"Starting development server on port {port}, debug={debug}")

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        threaded=True
    )
