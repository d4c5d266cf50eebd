"""
Flask Application Factory for the Cashtrail backend.

This module implements the application factory pattern for creating Flask app instances.
The factory pattern allows for:
- Multiple app instances with different configurations (dev, prod, test)
- Easier testing by creating isolated app instances
- Delayed initialization of extensions

The create_app() function initializes the Flask application with:
- Configuration loading
- Database setup (shared namespace)
- Tenant database manager (tenant namespaces, migrations, scoped execution)
- Logging configuration
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from flask import Flask
from flask.logging import default_handler

from .config import config
from .extensions import db


def create_app(config_name: Optional[str] = None, config_overrides: Optional[Dict[str, Any]] = None):
    """
    Application factory function to create and configure Flask app instance.

    Args:
        config_name: Configuration name ('development', 'production', 'testing')
                    If None, uses FLASK_ENV environment variable or defaults to 'development'
        config_overrides: Settings applied on top of the configuration class
                    (e.g. a test database URL)

    Returns:
        Flask: Configured Flask application instance

    Example:
        # Create development app
        app = create_app('development')

        # Create test app on a temporary database
        app = create_app('testing', {'SQLALCHEMY_DATABASE_URI': 'sqlite:////tmp/shared.db'})
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    config_class = config.get(config_name, config['default'])
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    # Configure logging before extensions so their startup is logged
    configure_logging(app)

    # Initialize configuration (calls init_app on config class)
    config_class.init_app(app)

    # Initialize Flask extensions
    initialize_extensions(app)

    # Register shell context (for flask shell)
    register_shell_context(app)

    app.logger.info(f"Flask app created with config: {config_name}")
    app.logger.info(f"Database URI: {app.config.get('SQLALCHEMY_DATABASE_URI', 'Not configured')[:50]}...")

    return app


def initialize_extensions(app):
    """
    Initialize Flask extensions with the app instance.

    Extensions initialized:
        - SQLAlchemy (db): shared namespace engine and Tenant model
        - TenantDatabaseManager: tenant namespaces and scoped execution
    """
    db.init_app(app)

    from .utils.database import tenant_db_manager
    tenant_db_manager.init_app(app)

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        db.session.remove()

    app.logger.info("Extensions initialized: db, tenant_db_manager")


def configure_logging(app):
    """
    Configure application logging.

    Sets up both console and file logging with rotation on the app logger
    ("cashtrail"); every cashtrail.* module logger propagates to it.

    Configuration:
        - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - LOG_FORMAT: Log message format
        - LOG_FILE: Path to log file (None disables file logging)
        - LOG_MAX_BYTES: Maximum log file size before rotation
        - LOG_BACKUP_COUNT: Number of backup log files to keep
    """
    # Remove default Flask handler
    app.logger.removeHandler(default_handler)

    # Drop handlers left by a previous app instance (same logger name)
    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        handler.close()

    log_level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO').upper())
    app.logger.setLevel(log_level)

    formatter = logging.Formatter(
        app.config.get('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    app.logger.addHandler(console_handler)

    # File handler with rotation (only if LOG_FILE is configured)
    log_file = app.config.get('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=app.config.get('LOG_MAX_BYTES', 10485760),  # 10MB
            backupCount=app.config.get('LOG_BACKUP_COUNT', 5)
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured: level={log_level}, file={log_file}")


def register_shell_context(app):
    """
    Register shell context for Flask shell.

    Context objects:
        - db: SQLAlchemy database instance
        - Tenant, TenantState: Tenant model and lifecycle states
        - tenant_db_manager: Tenant database manager
    """
    @app.shell_context_processor
    def make_shell_context():
        from .models.tenant import Tenant, TenantState
        from .utils.database import tenant_db_manager

        return {
            'db': db,
            'Tenant': Tenant,
            'TenantState': TenantState,
            'tenant_db_manager': tenant_db_manager,
        }
