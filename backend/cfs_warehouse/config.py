import logging
import os

DATABASE_URL = os.getenv("CFS_DATABASE_URL", "sqlite:///./cfs_warehouse.db")
LAYOUT_MAX_LOCATIONS = int(os.getenv("CFS_LAYOUT_MAX_LOCATIONS", "5000"))
LAYOUT_PREVIEW_SIZE = int(os.getenv("CFS_LAYOUT_PREVIEW_SIZE", "5"))
LOG_LEVEL = os.getenv("CFS_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CFS_CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    logger = logging.getLogger("cfs_warehouse")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    return logger
