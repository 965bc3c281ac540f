"""Flask application factory."""
import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from mrp_ledger.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Error tracking in production
    sentry_dsn = app.config.get('SENTRY_DSN')
    if sentry_dsn and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Redis cache for inventory reports
    from mrp_ledger.services.cache_service import init_cache
    init_cache(app)

    # Prometheus metrics instrumentation
    from mrp_ledger.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Initialize database
    init_db(app)

    # Acting user from the X-User header
    from mrp_ledger.middleware import load_actor

    @app.before_request
    def before_request_handler():
        load_actor()

    # Error Handlers
    from mrp_ledger.exceptions import LedgerError

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        """Render engine exceptions as JSON with their status code."""
        if error.status_code >= 500:
            app.logger.error(f"{error.kind} [{error.status_code}]: {error.message}")
        else:
            app.logger.info(f"{error.kind} [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description, 'error': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from mrp_ledger.blueprints.products import products_bp
    from mrp_ledger.blueprints.boms import boms_bp
    from mrp_ledger.blueprints.stock import stock_bp
    from mrp_ledger.blueprints.audit import audit_bp
    from mrp_ledger.blueprints.metrics import metrics_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(boms_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(metrics_bp)

    # CLI commands
    from mrp_ledger.cli_commands import init_cli_commands
    init_cli_commands(app)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok'})

    return app
