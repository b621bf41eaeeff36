import logging
import sys
from pathlib import Path

import structlog

from app.core.config import settings

_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "celery.redirected")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _build_handlers(log_dir: Path) -> list[logging.Handler]:
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=_SHARED_PROCESSORS,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_dir / "fireping.log")
    file_handler.setFormatter(formatter)

    return [console_handler, file_handler]


def setup_logging():
    """Configure stdlib logging with structlog JSON rendering."""
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(exist_ok=True)

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)
    for handler in _build_handlers(log_dir):
        root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        level=settings.LOG_LEVEL,
        environment=settings.ENVIRONMENT,
    )
    return logger
