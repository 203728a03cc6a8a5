"""Logging setup shared by the CLI and the API."""
import logging
import sys

from paysync.config import config

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once."""
    root = logging.getLogger()
    root.setLevel((level or config.LOG_LEVEL).upper())

    if not any(getattr(h, "_paysync", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        handler._paysync = True
        root.addHandler(handler)

    # httpx logs every request at INFO, including URLs with tokens
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
