"""Process-wide logging configuration."""

import logging
import sys

_HANDLER_NAME = "portfolio_tracker.stdout"
_NOISY_LOGGERS = ("sqlalchemy", "httpx", "httpcore", "urllib3")


def setup_logging(level: str | int = logging.INFO) -> None:
    """Configure logging to output to stdout with proper formatting.

    Safe to call more than once; the stdout handler is only attached the first
    time and later calls just adjust the root level.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if any(existing.get_name() == _HANDLER_NAME for existing in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Provider and driver chatter stays at WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
