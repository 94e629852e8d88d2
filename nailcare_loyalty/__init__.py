"""
Nailcare Loyalty back-end
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging
from .utils.cache import init_cache

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    app.config['ENV_NAME'] = config_name

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_cache(app)

    # Storefront origins; session cookies travel cross-origin
    cors_origins = [
        o.strip() for o in os.getenv(
            'CORS_ORIGINS',
            'http://localhost:3000,http://127.0.0.1:3000'
        ).split(',') if o.strip()
    ]
    CORS(app, origins=cors_origins, supports_credentials=True,
         allow_headers=['Content-Type', 'Authorization'])

    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    register_error_handlers(app)

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'nailcare-loyalty'}

    logger.info(f'Loyalty app created ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    # Customer API
    from .api.rewards import rewards_bp
    from .api.coupons import coupons_bp
    from .api.affiliate import affiliate_bp
    from .api.points import points_bp

    # Checkout and Stripe
    from .api.payments import payments_bp
    from .webhooks.stripe import stripe_webhook_bp

    # Admin API
    from .api.admin import admin_bp

    app.register_blueprint(rewards_bp, url_prefix='/api/rewards')
    app.register_blueprint(coupons_bp, url_prefix='/api/coupons')
    app.register_blueprint(affiliate_bp, url_prefix='/api/affiliate')
    app.register_blueprint(points_bp, url_prefix='/api/points')

    app.register_blueprint(payments_bp, url_prefix='/api/payments')
    app.register_blueprint(stripe_webhook_bp, url_prefix='/api/payments')

    app.register_blueprint(admin_bp, url_prefix='/api/admin')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': 'Bad request', 'code': 'INVALID_REQUEST'}, 400

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Not found', 'code': 'NOT_FOUND'}, 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return {'error': 'Method not allowed', 'code': 'INVALID_REQUEST'}, 405

    @app.errorhandler(500)
    def internal_error(error):
        return {'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}, 500
