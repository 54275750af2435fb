"""
Flask Application Factory for the account merge service.

This application factory wires:
- Merge JSON API (session identity from the host application)
- Public profile pages with crawler previews
- CSRF protection and rate limiting
"""
import json
import logging
import os
from typing import Any, Optional
from urllib.parse import urlsplit

import click
from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect
from werkzeug.middleware.proxy_fix import ProxyFix

from .api import merge_bp, public_bp
from .config_defaults import get_bool_config, get_config, get_int_config, require_default
from .database import init_db, seed_demo_accounts, set_setting
from .models import db
from .requester import get_classifier
from .settings_provider import COOLING_PERIOD_KEY, EXPIRY_DAYS_KEY, load_merge_settings

logger = logging.getLogger(__name__)

# Initialize CSRF protection globally
csrf = CSRFProtect()


def warn_if_forward_loops(app: Flask) -> bool:
    """
    Warn when humans would be forwarded back to this service.

    /u/<key> forwards browsers to FRONTEND_URL/u/<key>; on the same host as
    PUBLIC_APP_URL that only works if a proxy sends browsers to the frontend.
    """
    frontend = urlsplit(app.config['FRONTEND_URL']).netloc.lower()
    public = urlsplit(app.config['PUBLIC_APP_URL']).netloc.lower()
    if frontend and frontend == public:
        logger.warning(
            f"FRONTEND_URL host {frontend} is this service's PUBLIC_APP_URL host; "
            f"/u/<key> forwards loop unless a proxy routes browsers to the frontend"
        )
        return True
    return False


def create_app(config: Optional[dict[str, Any]] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Optional overrides applied on top of environment configuration
            (e.g. SQLALCHEMY_DATABASE_URI in tests)

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Trust proxy headers (for reverse proxy deployments)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # =========================================================================
    # Security Configuration
    # =========================================================================

    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or require_default('SECRET_KEY')

    # Maximum request size (1 MB, JSON bodies only)
    app.config['MAX_CONTENT_LENGTH'] = get_int_config('MAX_CONTENT_LENGTH', 1024 * 1024)

    flask_env = os.environ.get('FLASK_ENV', 'production')

    # Secure cookie - auto mode: off for local testing, on for production
    secure_setting = get_config('FLASK_SESSION_COOKIE_SECURE', 'auto')
    if secure_setting == 'auto':
        app.config['SESSION_COOKIE_SECURE'] = flask_env != 'local_test'
    else:
        app.config['SESSION_COOKIE_SECURE'] = secure_setting.lower() in ('true', '1', 'yes')

    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = get_config('FLASK_SESSION_COOKIE_SAMESITE', 'Lax')
    app.config['PERMANENT_SESSION_LIFETIME'] = get_int_config('FLASK_SESSION_LIFETIME', 3600)

    app.config['WTF_CSRF_ENABLED'] = get_bool_config('FLASK_WTF_CSRF_ENABLED', flask_env != 'local_test')

    # =========================================================================
    # Public Profile Configuration
    # =========================================================================

    app.config['PUBLIC_APP_URL'] = get_config('PUBLIC_APP_URL', 'http://localhost:5000')
    app.config['FRONTEND_URL'] = get_config('FRONTEND_URL', 'http://localhost:3000')
    app.config['MEDIA_BASE_URL'] = get_config('MEDIA_BASE_URL', app.config['PUBLIC_APP_URL'] + '/media')
    app.config['SITE_NAME'] = get_config('SITE_NAME', 'Travel Journal')
    app.config['DEFAULT_SHARE_IMAGE'] = get_config(
        'DEFAULT_SHARE_IMAGE', app.config['PUBLIC_APP_URL'] + '/share-default.png'
    )
    app.config['REQUESTER_CLASSIFIER'] = get_config('REQUESTER_CLASSIFIER', 'user_agent')
    app.config['MERGE_RATE_LIMIT'] = get_config('MERGE_RATE_LIMIT', '30 per minute')

    if config:
        app.config.update(config)

    warn_if_forward_loops(app)

    app.extensions['requester_classifier'] = get_classifier(app.config['REQUESTER_CLASSIFIER'])

    # =========================================================================
    # Database Initialization
    # =========================================================================

    init_db(app)

    # =========================================================================
    # CSRF Protection
    # =========================================================================

    csrf.init_app(app)

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    if flask_env == 'local_test':
        Limiter(
            app=app,
            key_func=get_remote_address,
            enabled=False,  # Disabled for testing
            storage_uri="memory://",
        )
        logger.info("Rate limiting disabled for local_test environment")
    else:
        limiter = Limiter(
            app=app,
            key_func=get_remote_address,
            default_limits=["200 per hour", "50 per minute"],
            storage_uri=get_config('RATELIMIT_STORAGE_URI', 'memory://'),
        )
        limiter.limit(app.config['MERGE_RATE_LIMIT'])(merge_bp)

    # =========================================================================
    # Register Blueprints
    # =========================================================================

    app.register_blueprint(merge_bp)
    app.register_blueprint(public_bp)

    # =========================================================================
    # Error Handlers
    # =========================================================================

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith('/merge/'):
            return jsonify({'error': 'not_found', 'message': 'Endpoint not found'}), 404
        return "Not Found", 404

    @app.errorhandler(500)
    def internal_error(e):
        logger.exception("Internal server error")
        if request.path.startswith('/merge/'):
            return jsonify({'error': 'internal', 'message': 'Internal server error'}), 500
        return "Internal Server Error", 500

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({'status': 'ok'})

    # =========================================================================
    # CLI Commands
    # =========================================================================

    @app.cli.command('seed-demo')
    def seed_demo_command():
        """Create demo accounts with public entries."""
        accounts = seed_demo_accounts()
        click.echo(f"Demo accounts: {', '.join(a.username for a in accounts)}")

    @app.cli.command('merge-settings')
    @click.option('--expiry-days', type=click.IntRange(min=0), help='Set invitation expiry (days).')
    @click.option('--cooling-days', type=click.IntRange(min=0), help='Set unmerge cooling period (days).')
    def merge_settings_command(expiry_days, cooling_days):
        """Print the effective merge settings, optionally updating them first."""
        if expiry_days is not None:
            set_setting(EXPIRY_DAYS_KEY, expiry_days)
        if cooling_days is not None:
            set_setting(COOLING_PERIOD_KEY, cooling_days)
        click.echo(json.dumps(load_merge_settings(db.session).to_dict(), indent=2))

    logger.info("Flask application created successfully")
    return app
