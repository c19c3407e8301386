"""Logging configuration."""
import logging
import sys

from backend.core import config

NOISY_LOGGERS = (
    'sqlalchemy.engine',
    'sqlalchemy.pool',
    'uvicorn.access',
)


def setup_logging(level: str | None = None) -> None:
    resolved_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(
        level=resolved_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))
