"""
Antistatic - Main Entry Point

Runs the Antistatic API with uvicorn.
"""

import structlog
import uvicorn

from antistatic.config import get_settings
from antistatic.core.logging import configure_logging

logger = structlog.get_logger(__name__)


def main():
    """Main entry point for running the application."""
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=not settings.is_development)

    logger.info(
        "starting_server",
        host=settings.api_host,
        port=settings.api_port,
        app_env=settings.app_env,
    )

    uvicorn.run(
        "antistatic.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
