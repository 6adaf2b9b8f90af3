"""
Runtime configuration for the Marketplace API.

Every setting comes from an environment variable so the same build runs
locally, in CI and in the container.
"""

import os


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Server
PORT = int(os.getenv("PORT", 8000))

# Bidding rules
ALLOW_SELF_BIDDING = _flag("ALLOW_SELF_BIDDING", True)
ENFORCE_RESERVE_PRICE = _flag("ENFORCE_RESERVE_PRICE", False)

# Periodic sweep
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", 60))

# Pagination
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", 20))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s %(levelname)s [%(name)s] %(message)s")
LOG_PATH = os.getenv("LOG_PATH")
