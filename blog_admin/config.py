"""
Configuration for the blog administration client
Class-level defaults, overridable from the environment
"""

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Config:
    """Client configuration"""

    # Backend settings
    API_BASE_URL = 'http://localhost:8080/api/v1/admin'
    REQUEST_TIMEOUT = 30  # seconds, total per request
    ENVELOPE = 'standard'  # 'standard' or 'success'

    # Persisted credentials
    STORAGE_PATH = 'blog_admin_session.db'

    # Navigation
    LOGIN_PATH = '/login'
    DEFAULT_PATH = '/posts'

    # Logging
    LOG_LEVEL = 'INFO'

    def __init__(self, api_base_url: Optional[str] = None, request_timeout: Optional[float] = None,
                 envelope: Optional[str] = None, storage_path: Optional[str] = None,
                 log_level: Optional[str] = None):
        # Instance attributes shadow the class defaults only when given
        if api_base_url is not None:
            self.API_BASE_URL = api_base_url.rstrip('/')
        if request_timeout is not None:
            self.REQUEST_TIMEOUT = float(request_timeout)
        if envelope is not None:
            self.ENVELOPE = envelope
        if storage_path is not None:
            self.STORAGE_PATH = storage_path
        if log_level is not None:
            self.LOG_LEVEL = log_level.upper()

    @classmethod
    def from_env(cls) -> 'Config':
        """Build a configuration from BLOG_ADMIN_* environment variables"""
        timeout = os.environ.get('BLOG_ADMIN_TIMEOUT')
        return cls(
            api_base_url=os.environ.get('BLOG_ADMIN_API_URL'),
            request_timeout=float(timeout) if timeout else None,
            envelope=os.environ.get('BLOG_ADMIN_ENVELOPE'),
            storage_path=os.environ.get('BLOG_ADMIN_STORAGE'),
            log_level=os.environ.get('BLOG_ADMIN_LOG_LEVEL'),
        )

    def log_config(self):
        """Log current configuration"""
        logger.info("=== BLOG ADMIN CLIENT CONFIGURATION ===")
        logger.info(f"API Base URL: {self.API_BASE_URL}")
        logger.info(f"Request Timeout: {self.REQUEST_TIMEOUT}s")
        logger.info(f"Envelope: {self.ENVELOPE}")
        logger.info(f"Storage Path: {self.STORAGE_PATH}")
        logger.info(f"Login Path: {self.LOGIN_PATH}")
        logger.info(f"Default Path: {self.DEFAULT_PATH}")
        logger.info("=======================================")


def configure_logging(level: str = 'INFO'):
    """Configure root logging for command-line use"""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
