# backend/storefront/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import blobs, db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    blobs.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp, uploaded_file
    from .routes.categories import categories_bp
    from .routes.attributes import attributes_bp
    from .routes.products import products_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(attributes_bp)
    app.register_blueprint(products_bp)

    # Public URL space of the blob store
    upload_prefix = app.config["UPLOAD_URL_PREFIX"].rstrip("/")
    app.add_url_rule(f"{upload_prefix}/<path:filename>", "uploaded_file", uploaded_file)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
