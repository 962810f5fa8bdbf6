"""
Flask Application Factory - Camp session pipeline API

Scraped sessions, registrations and the admin scraping console share one
app. Periodic work (scrapes, digests, planner aggregates) runs from the
click CLI in cli.py, not from request handlers.
"""

import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate

from config import Config
from models.database import db

# Initialize Flask-Migrate (will be initialized in create_app)
migrate = Migrate()

logger = logging.getLogger(__name__)


def create_app(config_overrides: dict = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=logging.DEBUG if app.config.get('DEBUG') else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Flask-CORS handles all CORS headers, including on error responses
    CORS(app,
         resources={r"/api/*": {"origins": "*"}},
         methods=["GET", "POST", "OPTIONS", "PUT", "DELETE"],
         allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
         expose_headers=["X-Request-ID"],
         supports_credentials=False,
         send_wildcard=True)

    # === API MIDDLEWARE ===
    from api.middleware import setup_error_handlers, setup_request_id_middleware
    setup_request_id_middleware(app)
    setup_error_handlers(app)

    # Resolve the acting principal once per request (JWT + admin allowlist)
    from utils.principal import load_principal
    app.before_request(load_principal)

    # Initialize SQLAlchemy
    db.init_app(app)

    # Initialize Flask-Migrate for database migrations
    migrate.init_app(app, db)

    with app.app_context():
        # Import all models before create_all to ensure tables are created
        import models  # noqa: F401
        import scrapers.models  # noqa: F401

        env = (os.environ.get("FLASK_ENV") or app.config.get("APP_ENV") or "").lower()
        is_prod = env in {"prod", "production"}
        allow_create = app.config.get("TESTING") or not is_prod
        if allow_create:
            db.create_all()
            logger.info("Database initialized")
        else:
            logger.info("Database ready (schema creation disabled in production)")

    # Register routes
    from routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from routes.sessions import sessions_bp
    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')

    from routes.registrations import registrations_bp
    app.register_blueprint(registrations_bp, url_prefix='/api/registrations')

    # Admin scraping console (admin allowlist only)
    from routes.admin_scraping import admin_scraping_bp
    app.register_blueprint(admin_scraping_bp, url_prefix='/api/admin/scraping')

    @app.route("/", methods=["GET"])
    def index():
        from models import Session
        from scrapers.models import ScrapeSource

        return jsonify({
            "name": "Camp Session Pipeline API",
            "status": "running",
            "active_sources": ScrapeSource.query.filter_by(is_active=True).count(),
            "active_sessions": Session.query.filter_by(status='active').count(),
        })

    return app


def run_app():
    """Main entry point for local development - starts server with Flask's dev server."""
    app = create_app()
    app.run(debug=True, host="0.0.0.0", port=5000)


if __name__ == "__main__":
    run_app()
