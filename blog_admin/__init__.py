"""
Blog administration client: HTTP client, resource services, query cache,
session store and route guard for the blog admin API
"""

from .cache import KeyPattern, QueryCache, QueryKey, QueryState
from .client import HttpClient
from .config import Config, configure_logging
from .context import AdminContext
from .errors import (ApiError, AuthError, ErrorKind, ForbiddenError, NetworkError,
                     NotFoundError, ServerError, ValidationError)
from .guard import GuardDecision, Navigator, RouteGuard, check_route, guard_middleware
from .notifier import Notifier
from .session import SessionState, SessionStore
from .storage import CredentialStore

__version__ = '1.0.0'

__all__ = [
    'AdminContext',
    'ApiError',
    'AuthError',
    'Config',
    'CredentialStore',
    'ErrorKind',
    'ForbiddenError',
    'GuardDecision',
    'HttpClient',
    'KeyPattern',
    'Navigator',
    'NetworkError',
    'NotFoundError',
    'Notifier',
    'QueryCache',
    'QueryKey',
    'QueryState',
    'RouteGuard',
    'ServerError',
    'SessionState',
    'SessionStore',
    'ValidationError',
    'check_route',
    'configure_logging',
    'guard_middleware',
]
