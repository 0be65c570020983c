"""Main entry point - runs the API server."""

import logging
import sys

import uvicorn

from charger.api.app import create_app
from charger.config import get_settings
from charger.errors import ConfigurationError

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    settings = get_settings()

    # Configure logging
    log_level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings.validate_required()
    except ConfigurationError as e:
        logger.critical(f"Couldn't load configuration: {e.reason}")
        sys.exit(1)

    logger.info("Starting charger...")
    logger.info(f"Environment: {settings.environment}")

    app = create_app()
    logger.info(f"Listening at {settings.api_host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
