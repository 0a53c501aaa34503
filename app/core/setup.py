"""
Application setup and initialization.

Early initialization that must run before the FastAPI application is created:
- Environment variable loading
- Sentry initialization
- Logging configuration
"""
import os

from dotenv import load_dotenv

from app.config.sentry import init_sentry
from app.utils.logger import configure_logging, get_logger


def setup_application() -> None:
    """
    Initialize application environment and configuration.

    Must be called before creating the FastAPI application instance. The
    order matters: environment variables first, then Sentry so import-time
    errors are captured, then logging.
    """
    load_dotenv()

    init_sentry()

    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "info"),
        log_format=os.getenv("LOG_FORMAT", "json"),
        log_file=os.getenv(
            "LOG_FILE",
            "app.log" if os.getenv("ENVIRONMENT") == "production" else None,
        ),
        log_dir=os.getenv("LOG_DIR", "logs"),
    )

    logger = get_logger(__name__)
    logger.info(
        "Application configured",
        environment=os.getenv("ENVIRONMENT", "development"),
    )
