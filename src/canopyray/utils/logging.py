"""Package-wide logger configuration.

All modules obtain loggers through :func:`get_logger` so that every record is
routed through a single ``canopyray`` handler. The level is read once from the
``CANOPYRAY_LOG_LEVEL`` environment variable (default ``INFO``).
"""

import logging
import os
from typing import Optional

_PACKAGE_LOGGER_NAME = "canopyray"
_ENV_LEVEL = "CANOPYRAY_LOG_LEVEL"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_LEVEL_NAMES = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _resolve_level(value: Optional[str]) -> int:
    if not value:
        return logging.INFO
    return _LEVEL_NAMES.get(value.strip().upper(), logging.INFO)


def _configure_root() -> logging.Logger:
    root = logging.getLogger(_PACKAGE_LOGGER_NAME)
    if not any(handler.get_name() == _PACKAGE_LOGGER_NAME for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_PACKAGE_LOGGER_NAME)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(_resolve_level(os.getenv(_ENV_LEVEL)))
        root.propagate = False
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger namespaced under ``canopyray``."""
    root = _configure_root()
    if not name:
        return root
    if name == _PACKAGE_LOGGER_NAME or name.startswith(_PACKAGE_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_PACKAGE_LOGGER_NAME}.{name}")
