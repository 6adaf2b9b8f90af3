import logging
import os
from typing import Optional

import config

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def level_from_name(name: Optional[str]) -> int:
    """Maps a level name from the environment to a logging level, INFO if unknown."""
    if not name:
        return logging.INFO
    return _LEVELS.get(name.strip().upper(), logging.INFO)


def create_logger(name: str, path: Optional[str] = None) -> logging.Logger:
    """Creates a logger writing to stderr and, when a path is given, to a file.

    Args:
        name (str): The name of the logger.
        path (str, optional): Directory for a ``<name>.log`` file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level_from_name(config.LOG_LEVEL))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(config.LOG_FORMAT)

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if path:
        os.makedirs(path, exist_ok=True)
        handler = logging.FileHandler(os.path.join(path, (name or "marketplace") + ".log"))
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def setup_logging() -> logging.Logger:
    """Configures the root logger once for the API process or the sweeper."""
    root = create_logger("", config.LOG_PATH)
    # module loggers propagate here
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    return root
