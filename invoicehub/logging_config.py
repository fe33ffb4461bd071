import logging
from typing import Optional

import structlog

from invoicehub.config import settings

# SDK loggers that are chatty at INFO (per-request HTTP lines, credential refresh)
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "google.auth")


def setup_logging(level: Optional[str] = None):
    """Configure structlog for the service and the maintenance scripts.

    Console output in development, one JSON object per line elsewhere.
    ``request_id`` and friends come from contextvars bound by the
    correlation middleware.
    """
    level_no = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.ENVIRONMENT == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level_no, logging.WARNING))
