"""Flask application factory for Folder Uploader."""

import os

from flask import Flask

from folder_uploader.config import get_package_version, get_settings


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")

    # Store settings in app config for easy access
    app.config["SETTINGS"] = settings

    # Register blueprints
    from folder_uploader.routes.logs import logs_bp
    from folder_uploader.routes.progress import progress_bp
    from folder_uploader.routes.run import run_bp
    from folder_uploader.routes.settings import settings_bp
    from folder_uploader.routes.status import status_bp

    app.register_blueprint(status_bp, url_prefix="/api/status")
    app.register_blueprint(run_bp, url_prefix="/api/run")
    app.register_blueprint(progress_bp, url_prefix="/api/progress")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")

    from folder_uploader.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version()},
    )

    return app
