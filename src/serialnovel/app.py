"""Flask web app for the serial novel engine."""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from .config import EngineSettings
from .api.routes import register_routes, SERVICE_EXTENSION
from .services.continuity_service import ContinuityService, create_continuity_service
from .utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )


def create_app(
    settings: Optional[EngineSettings] = None,
    service: Optional[ContinuityService] = None
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        settings: Engine settings (read from the environment and .env if None)
        service: Pre-built service (built from settings if None)

    Returns:
        Configured Flask app
    """
    if settings is None:
        load_dotenv()
        settings = EngineSettings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config["ENGINE_SETTINGS"] = settings
    app.extensions[SERVICE_EXTENSION] = service or create_continuity_service(settings)

    register_error_handlers(app, debug=os.getenv('FLASK_ENV') == 'development')
    register_routes(app)

    novel_count = len(app.extensions[SERVICE_EXTENSION].store.list_slugs())
    logger.info(f"Story state store initialized with {novel_count} novels ({settings.storage_backend} backend)")
    return app
