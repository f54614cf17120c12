"""
Flask application factory.

Creates and configures the operator API, registers all blueprints.
"""
import hmac

from flask import Flask, request, jsonify


def create_app(session_factory=None):
    """Create and configure the Flask application."""
    from oversight.config import DASHBOARD_TOKEN, SECRET_KEY
    from oversight.database import import_models
    from oversight.errors import OversightError
    from oversight.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    app.secret_key = SECRET_KEY
    app.config['SESSION_FACTORY'] = session_factory

    # ── Optional bearer-token gate ──────────────────────────────────────
    OPEN_PATHS = {'/health'}

    @app.before_request
    def require_token():
        token = app.config.get('DASHBOARD_TOKEN', DASHBOARD_TOKEN)
        if not token:
            return  # no token configured, open access for local dev
        if request.path in OPEN_PATHS:
            return
        supplied = request.headers.get('Authorization', '')
        if supplied.startswith('Bearer '):
            supplied = supplied[len('Bearer '):]
        else:
            supplied = request.headers.get('X-Dashboard-Token', '')
        if supplied and hmac.compare_digest(supplied, token):
            return
        return jsonify({'error': 'Unauthorized'}), 401

    @app.errorhandler(OversightError)
    def handle_oversight_error(e):
        return jsonify({'error': str(e), 'type': type(e).__name__}), e.http_status

    # Register blueprints
    from oversight.routes.jobs import bp as jobs_bp
    from oversight.routes.content import bp as content_bp
    from oversight.routes.attribution import bp as attribution_bp
    from oversight.routes.monitor import bp as monitor_bp

    app.register_blueprint(jobs_bp)
    app.register_blueprint(content_bp)
    app.register_blueprint(attribution_bp)
    app.register_blueprint(monitor_bp)

    # Import models so Base.metadata knows about them.
    # Schema is provisioned outside this service; no create_all() here.
    import_models()

    return app
