"""
Logging setup shared by the API process and the cleanup sweep.
"""

import logging

from app.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure the root logger from LOG_LEVEL."""
    logging.basicConfig(level=settings.log_level.value, format=LOG_FORMAT)
    logging.getLogger().setLevel(settings.log_level.value)
