"""Flask application factory."""
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException
from storefront.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # CSRF protection for state-changing requests (JSON clients send X-CSRFToken)
    CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'error': 'CSRF', 'message': 'Invalid or missing CSRF token'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for order emails
    from storefront.services.email_service import init_mail
    init_mail(app)

    # Redis cache
    from storefront.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from storefront.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production' or app.config.get('FLASK_ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Loyalty program settings, loaded once
    from storefront.services.loyalty_service import init_loyalty
    init_loyalty(app)

    # Load customer identity before each request
    from storefront.decorators.auth import load_identity

    @app.before_request
    def before_request_handler():
        load_identity()

    # Error Handlers
    from storefront.exceptions import StorefrontError

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(error):
        """Map domain errors to JSON responses."""
        if error.status_code >= 500:
            app.logger.error(f"StorefrontError [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"StorefrontError [{error.status_code}] {error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception on {request.method} {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from storefront.blueprints.main import main_bp
    from storefront.blueprints.cart import cart_bp
    from storefront.blueprints.orders import orders_bp
    from storefront.blueprints.loyalty import loyalty_bp
    from storefront.blueprints.discounts import discounts_bp
    from storefront.blueprints.admin import admin_bp
    from storefront.blueprints.metrics import metrics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(discounts_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(metrics_bp)

    # CLI commands
    from storefront.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")

    return app
