"""
Logging setup for CertAnchor Backend.
All service loggers hang off the "certanchor" logger so one call configures them.
"""

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "certanchor"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("web3", "urllib3", "botocore", "boto3", "s3transfer", "PyPDF2")


def setup_logger(name: str = ROOT_LOGGER_NAME, level: str = "INFO") -> logging.Logger:
    """
    Attach a stdout handler to the service logger and set its level.

    Args:
        name: Root logger of the service
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; unknown names fall back to INFO

    Returns:
        The configured logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    service_logger = logging.getLogger(name)
    service_logger.setLevel(numeric_level)
    service_logger.propagate = False

    # uvicorn --reload imports the app again; keep a single handler
    if not service_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        service_logger.addHandler(handler)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    return service_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Child of the service logger, e.g. get_logger("pdf_service") -> certanchor.pdf_service."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}" if name else ROOT_LOGGER_NAME)
