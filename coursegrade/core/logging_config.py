"""Logging setup for the API process and the rq worker."""
import logging
from coursegrade.core.config import LOG_LEVEL

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    return logging.getLogger("coursegrade")
