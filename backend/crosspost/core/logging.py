"""Logging configuration for the application"""
import logging

from crosspost.core.config import settings


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_secret(value: str, visible: int = 8) -> str:
    """Shorten an opaque token for log output"""
    if not value:
        return ""
    return f"{value[:visible]}..."


oauth_logger = logging.getLogger("oauth")
token_logger = logging.getLogger("tokens")
publish_logger = logging.getLogger("publish")
worker_logger = logging.getLogger("worker")
