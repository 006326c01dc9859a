"""
Central logging configuration for spacio.

Suppresses verbose debug logs from third-party HTTP libraries while keeping
spacio's own diagnostics, and tags every record with the current action ID.
"""

import logging
import os
from typing import Optional

from .correlation import get_action_id


class ActionIdFilter(logging.Filter):
    """Add the current action ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add action ID to log record.

        Args:
            record: Log record to enhance

        Returns:
            True to allow record to be logged
        """
        record.action_id = get_action_id()
        return True


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for spacio.

    Args:
        debug_mode: Whether to enable debug logging for spacio modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        SPACIO_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        SPACIO_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("SPACIO_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("SPACIO_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    action_filter = ActionIdFilter()

    # Only add a handler if none exist (preserve the colorized setup from spacio._init_logging)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] [%(action_id)s] %(levelname)s - %(name)s - %(message)s"
            )
        )
        handler.addFilter(action_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, ActionIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(action_filter)

    noisy_loggers: dict[str, int] = {
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "asyncio": logging.WARNING,
        "charset_normalizer": logging.WARNING,
    }
    for name, level in noisy_loggers.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger("spacio").setLevel(logging.DEBUG if final_debug else root_level)

    logging.getLogger(__name__).debug(
        "Logging configured (debug=%s, root=%s)", final_debug, logging.getLevelName(root_level)
    )


def mask_token(token: Optional[str]) -> str:
    """Render a session token safely for logs."""
    if not token:
        return "null"
    return f"{token[:6]}..."
