from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_cors import CORS
import structlog
from marshmallow import ValidationError
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError
from retry import retry
import time

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
logger = structlog.get_logger()


# Database connection retry decorator
@retry(OperationalError, tries=3, delay=2, backoff=2)
def check_database_connection(app):
    """Open a connection once so a dead database fails fast at startup"""
    try:
        with app.app_context():
            with db.engine.connect() as connection:
                connection.execute(text('SELECT 1'))
        logger.info("Database connection established successfully")
    except OperationalError as e:
        logger.error(f"Database connection failed: {str(e)}")
        raise


def create_app(config_name='development', config_overrides=None):
    """
    Application factory function to create and configure the Flask application

    Args:
        config_name (str, optional): Name of the configuration environment.
                                     Defaults to 'development'.
        config_overrides (dict, optional): Settings applied on top of the
                                           configuration class.

    Returns:
        Flask: Configured Flask application instance
    """
    # Import config dynamically to avoid circular imports
    from .config import get_config

    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    cors_options = {
        'origins': app.config['CORS_ORIGINS'],
        'methods': ['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS', 'PATCH'],
        'allow_headers': ['Content-Type', 'Authorization', 'Cache-Control', 'If-Match', 'If-None-Match'],
        'expose_headers': ['Content-Range', 'X-Total-Count'],
        'supports_credentials': True
    }
    CORS(app, **cors_options)
    logger.debug(f"CORS Origins configured: {app.config['CORS_ORIGINS']}")

    if app.config.get('LOG_TO_STDOUT'):
        _setup_logging(app)
    config_class.init_app(app)

    _configure_database(app)
    config_class.init_db(app)

    db.init_app(app)
    check_database_connection(app)
    migrate.init_app(app, db, directory=app.config.get('MIGRATIONS_DIR', 'migrations'))

    _configure_security(app)
    _configure_login_manager(app)

    with app.app_context():
        _init_database_models(app)
        _configure_query_monitoring(app)

    _register_blueprints(app)
    _register_commands(app)
    _setup_error_handlers(app)

    app.logger.info(f"Starting application in {config_name} mode")
    return app


def _register_blueprints(app):
    """
    Register application blueprints

    Args:
        app (Flask): Flask application instance
    """
    from .routes import (
        auth_bp,
        client_bp,
        packages_bp,
        sessions_bp,
        payments_bp,
        invoices_bp,
        expenses_bp,
        staff_bp,
        portal_bp,
        reporting_bp,
        dashboard_bp
    )

    blueprints = [
        (auth_bp, '/auth'),
        (client_bp, '/clients'),
        (packages_bp, '/packages'),
        (sessions_bp, '/sessions'),
        (payments_bp, '/payments'),
        (invoices_bp, '/invoices'),
        (expenses_bp, '/expenses'),
        (staff_bp, '/staff'),
        (portal_bp, '/portal'),
        (reporting_bp, '/reports'),
        (dashboard_bp, '/dashboard')
    ]

    for blueprint, url_prefix in blueprints:
        app.register_blueprint(blueprint, url_prefix=url_prefix)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok', 'service': app.config['APP_NAME']}), 200


def _register_commands(app):
    from .commands import studio_cli
    app.cli.add_command(studio_cli)


def _setup_error_handlers(app):
    """
    Set up custom error handlers for the application

    Args:
        app (Flask): Flask application instance
    """
    from .errors import StudioError, ConcurrentModification, BackendUnavailable

    @app.errorhandler(StudioError)
    def handle_studio_error(error):
        app.logger.warning(f'{error.code}: {error.message}')
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({'error': 'validation_error', 'messages': error.messages}), 400

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error):
        db.session.rollback()
        return handle_studio_error(ConcurrentModification())

    @app.errorhandler(OperationalError)
    def handle_operational_error(error):
        app.logger.error(f'Database unavailable: {error}')
        db.session.rollback()
        return handle_studio_error(BackendUnavailable())

    @app.errorhandler(404)
    def page_not_found(error):
        app.logger.error(f'Page not found: {error}')
        return jsonify({'error': 'not_found', 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'method_not_allowed', 'message': str(error)}), 405

    @app.errorhandler(500)
    def internal_server_error(error):
        app.logger.error(f'Server Error: {error}')
        db.session.rollback()
        return jsonify({'error': 'internal_error', 'message': 'An unexpected error occurred'}), 500


def _configure_database(app):
    """Configure database specific settings"""
    uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine_options = dict(app.config.get('SQLALCHEMY_ENGINE_OPTIONS') or {})

    if uri.startswith('postgresql'):
        engine_options.setdefault('pool_size', app.config.get('SQLALCHEMY_POOL_SIZE', 10))
        engine_options.setdefault('max_overflow', app.config.get('SQLALCHEMY_MAX_OVERFLOW', 20))
        engine_options.setdefault('pool_timeout', app.config.get('SQLALCHEMY_POOL_TIMEOUT', 30))
        engine_options.setdefault('pool_recycle', app.config.get('SQLALCHEMY_POOL_RECYCLE', 1800))
        engine_options.setdefault('pool_pre_ping', True)
        connect_args = engine_options.setdefault('connect_args', {})
        connect_args.setdefault(
            'options', f"-c statement_timeout={app.config.get('DATABASE_STATEMENT_TIMEOUT_MS', 15000)}"
        )
        if app.config.get('POSTGRES_SSL_ROOTCERT'):
            connect_args.update({
                'sslmode': 'verify-full',
                'sslrootcert': app.config.get('POSTGRES_SSL_ROOTCERT'),
            })

    elif uri.startswith('sqlite') and ':memory:' not in uri:
        # Writers wait on the database lock instead of failing immediately
        connect_args = engine_options.setdefault('connect_args', {})
        connect_args.setdefault('timeout', app.config.get('SQLALCHEMY_POOL_TIMEOUT', 30))

    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = engine_options


def _configure_query_monitoring(app):
    """Log statements slower than SLOW_QUERY_THRESHOLD"""
    threshold = app.config.get('SLOW_QUERY_THRESHOLD', 0.5)

    @event.listens_for(db.engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault('query_start_time', []).append(time.time())

    @event.listens_for(db.engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        total = time.time() - conn.info['query_start_time'].pop()
        if total > threshold:
            logger.warning(f"Slow query detected: {total:.2f}s\n{statement}")


def _configure_security(app):
    """Configure enhanced security settings"""

    @app.after_request
    def add_security_headers(response):
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'SAMEORIGIN'
        response.headers['Content-Security-Policy'] = app.config.get(
            'CONTENT_SECURITY_POLICY',
            "default-src 'self'"
        )
        return response

    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    app.config['PERMANENT_SESSION_LIFETIME'] = app.config.get('PERMANENT_SESSION_LIFETIME', 3600)


def _init_database_models(app):
    """Create tables that do not exist yet and seed the document counters"""
    from . import models  # noqa: F401
    from .services.invoice_service import ensure_sequence

    db.create_all()
    ensure_sequence()


def _setup_logging(app):
    """Setup enhanced logging configuration"""
    import logging
    import sys

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.INFO)

    app.logger.addHandler(stream_handler)


def _configure_login_manager(app):
    """Configure Flask-Login for the JSON API"""
    login_manager.init_app(app)
    login_manager.session_protection = "strong"

    app.config['REMEMBER_COOKIE_HTTPONLY'] = True
    app.config['REMEMBER_COOKIE_SAMESITE'] = 'Lax'

    @login_manager.user_loader
    def load_user(user_id):
        from .models.user import User
        user = db.session.get(User, int(user_id))
        if user and user.is_active:
            return user
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({
            "error": "unauthenticated",
            "message": "You must be logged in to access this resource"
        }), 401

    app.logger.info("Login manager configured")
