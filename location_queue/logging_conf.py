"""Logging for the location queue: console, rotating file and optional BetterStack."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from logtail import LogtailHandler

from location_queue import settings

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level() -> int:
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


def _betterstack_handler(formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Build the BetterStack handler, or None when no token is configured."""
    if not settings.BETTERSTACK_SOURCE_TOKEN:
        return None
    kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
    if settings.BETTERSTACK_INGEST_HOST:
        kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
    handler = LogtailHandler(**kwargs)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> logging.Logger:
    """Configure the package logger and return it.

    Handlers are attached to the ``location_queue`` logger rather than the
    root logger so a host application keeps control of its own logging.
    """
    package_logger = logging.getLogger("location_queue")
    package_logger.setLevel(_level())
    package_logger.handlers = []
    formatter = logging.Formatter(FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(_level())
    console.setFormatter(formatter)
    package_logger.addHandler(console)

    try:
        settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            settings.LOGS_DIR / "location_queue.log", maxBytes=10 * 1024 * 1024, backupCount=5
        )
        rotating.setLevel(logging.INFO)
        rotating.setFormatter(formatter)
        package_logger.addHandler(rotating)
    except OSError as e:
        package_logger.warning(f"File logging disabled; cannot write to {settings.LOGS_DIR}: {e}")

    try:
        betterstack = _betterstack_handler(formatter)
        if betterstack is not None:
            package_logger.addHandler(betterstack)
            host_info = settings.BETTERSTACK_INGEST_HOST or "default (in.logs.betterstack.com)"
            package_logger.info(f"BetterStack logging enabled (host: {host_info})")
    except Exception as e:
        package_logger.warning(f"Failed to initialize BetterStack logging: {e}")

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return package_logger


logger = setup_logging()
