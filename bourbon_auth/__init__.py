"""
Flask application factory.

Creates the auth API with its security extensions, the login security
guard and the blueprint. Factory pattern so each test can build an app
from a different config class.

Extension initialization order:
1. bcrypt: needed by init_db to seed the demo user and by the dummy hash
2. csrf: registers the before_request CSRF check
3. session: server-side session management
4. limiter: enforcement conditional on RATELIMIT_ENABLED
"""

import os

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from bourbon_auth.config import DevelopmentConfig


def create_app(config_class=None):
    """
    Create and configure the Flask application.

    Args:
        config_class: Configuration class to use. Defaults to DevelopmentConfig.

    Returns:
        Configured Flask application instance.
    """
    if config_class is None:
        config_class = DevelopmentConfig

    app = Flask(__name__)
    app.config.from_object(config_class)

    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    # Behind a reverse proxy, remote_addr must be the client, not the proxy;
    # the IP side of the guard keys on it.
    proxy_count = app.config.get('PROXY_COUNT', 0)
    if proxy_count:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxy_count, x_proto=proxy_count)

    os.makedirs(app.instance_path, exist_ok=True)
    session_dir = os.path.join(app.instance_path, 'flask_sessions')
    os.makedirs(session_dir, exist_ok=True)
    app.config['SESSION_FILE_DIR'] = session_dir

    # --- Initialize Extensions ---

    from bourbon_auth.extensions import bcrypt, csrf, limiter, sess

    bcrypt.init_app(app)
    csrf.init_app(app)
    sess.init_app(app)

    # flask-limiter reads RATELIMIT_ENABLED and RATELIMIT_STORAGE_URI itself;
    # the flag is set explicitly because the limiter instance is shared by
    # every app built in one process (tests).
    limiter.init_app(app)
    limiter.enabled = app.config.get('RATELIMIT_ENABLED', True)

    # --- Logging ---
    from bourbon_auth.logging_config import setup_security_logging
    setup_security_logging(app)

    # --- Security Primitives ---
    from bourbon_auth.auth.security import init_dummy_hash, init_login_guard
    with app.app_context():
        init_dummy_hash(app)
    init_login_guard(app)

    # --- Register Blueprints ---
    from bourbon_auth.auth import auth_bp
    app.register_blueprint(auth_bp)

    # --- Error Handlers ---
    from flask_wtf.csrf import CSRFError
    from bourbon_auth.auth.security import log_csrf_failure

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        """The client needs a fresh token; nothing more is disclosed."""
        log_csrf_failure()
        return jsonify(error='Your session has expired. Please try again.'), 400

    @app.errorhandler(429)
    def handle_rate_limit(e):
        return jsonify(error='Too many requests. Please try again later.'), 429

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify(error='Not found.'), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify(error='Method not allowed.'), 405

    @app.errorhandler(413)
    def handle_request_too_large(e):
        return jsonify(error='Request too large.'), 413

    @app.errorhandler(500)
    def handle_server_error(e):
        """No stack traces or internal details."""
        return jsonify(error='Internal server error.'), 500

    # --- Database Initialization ---
    from bourbon_auth.auth.models import close_db, init_db

    app.teardown_appcontext(close_db)

    with app.app_context():
        init_db(app)

    return app
