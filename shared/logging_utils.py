"""
Logging utilities for the application.

Every component logs through a named child of the ``session_insights``
logger, so one handler and one level apply to the whole pipeline.
"""
import logging
import os

ROOT_LOGGER_NAME = "session_insights"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(log_level: str | None) -> int:
    level_name = (log_level or os.getenv("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(service_name: str, log_level: str | None = None) -> logging.Logger:
    """
    Setup logging for a pipeline component.

    Args:
        service_name: Component name, shown in every record
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Falls back to the LOG_LEVEL environment variable, then INFO.

    Returns:
        Logger named ``session_insights.<service_name>``
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(_resolve_level(None))
        root.propagate = False

    logger = root.getChild(service_name)
    if log_level is not None:
        logger.setLevel(_resolve_level(log_level))
    return logger
