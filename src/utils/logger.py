"""Logger wrapper honoring the configured log level."""

import logging
import sys

from config.settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging() -> None:
    """Configure root logger once."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # SQL echo is controlled by the engine, keep the driver loggers quiet
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


_configure_logging()


def get_logger(name: str) -> logging.Logger:
    """Return a logger with preconfigured settings."""
    return logging.getLogger(name)
