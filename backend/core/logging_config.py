"""
Centralized logging configuration for the HTTP app and the relay workers.
"""
import logging
import sys
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(
    level: str = "INFO",
    log_format: Optional[str] = None
) -> None:
    """
    Configure process-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (optional)
    """
    if log_format is None:
        log_format = DEFAULT_FORMAT

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ],
        force=True,
    )

    # Client libraries are chatty at INFO (group rebalances, pool checkouts)
    logging.getLogger('aiokafka').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
