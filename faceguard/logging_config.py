"""
Logging configuration for FaceGuard.

Provides structured logging with client ID context.
"""

import logging
import sys


class ClientContextFilter(logging.Filter):
    """Add client context to log records."""

    def __init__(self, client_id: str):
        super().__init__()
        self.client_id = client_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.client_id = self.client_id
        return True


def setup_logging(client_id: str, debug: bool = False) -> None:
    """
    Configure logging for the process.

    Args:
        client_id: Client (or store) identifier for log context
        debug: Enable debug level logging
    """
    level = logging.DEBUG if debug else logging.INFO

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    # Formatter with client context
    formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] [client=%(client_id)s] %(name)s: %(message)s'
    )
    console_handler.setFormatter(formatter)

    # Add client context filter
    console_handler.addFilter(ClientContextFilter(client_id))

    root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
