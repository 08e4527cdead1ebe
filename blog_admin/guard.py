"""
Route guard and navigation
Decides, from a path and whether a token is present, if a screen may be shown
or where to redirect instead. The same decisions drive the in-process
Navigator and an aiohttp middleware for served admin pages.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

from aiohttp import web

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = ('/posts', '/tags', '/comments', '/users')
AUTH_ONLY_PREFIXES = ('/login',)
LOGIN_PATH = '/login'
DEFAULT_PATH = '/posts'


class GuardDecision(Enum):
    ALLOW = 'allow'
    REDIRECT_LOGIN = 'redirect_login'
    REDIRECT_DEFAULT = 'redirect_default'


def normalize_path(path: str) -> str:
    """Strip query string, fragment and trailing slashes"""
    path = urlsplit(path or '/').path or '/'
    if not path.startswith('/'):
        path = '/' + path
    return path.rstrip('/') or '/'


def _under(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip('/')
    return path == prefix or path.startswith(prefix + '/')


class RouteGuard:
    """Stateless guard over path prefixes"""

    def __init__(self, protected: Iterable[str] = PROTECTED_PREFIXES,
                 auth_only: Iterable[str] = AUTH_ONLY_PREFIXES,
                 login_path: str = LOGIN_PATH, default_path: str = DEFAULT_PATH):
        self.protected = tuple(protected)
        self.auth_only = tuple(auth_only)
        self.login_path = login_path
        self.default_path = default_path

    def decide(self, path: str, has_token: bool) -> GuardDecision:
        path = normalize_path(path)
        if path == '/':
            return GuardDecision.REDIRECT_LOGIN
        if not has_token and any(_under(path, p) for p in self.protected):
            return GuardDecision.REDIRECT_LOGIN
        if has_token and any(_under(path, p) for p in self.auth_only):
            return GuardDecision.REDIRECT_DEFAULT
        return GuardDecision.ALLOW

    def redirect_target(self, decision: GuardDecision) -> Optional[str]:
        if decision is GuardDecision.REDIRECT_LOGIN:
            return self.login_path
        if decision is GuardDecision.REDIRECT_DEFAULT:
            return self.default_path
        return None

    def resolve(self, path: str, has_token: bool) -> Tuple[GuardDecision, str]:
        """Decision plus the location that ends up displayed"""
        decision = self.decide(path, has_token)
        return decision, self.redirect_target(decision) or normalize_path(path)


_default_guard = RouteGuard()


def check_route(path: str, has_token: bool) -> GuardDecision:
    return _default_guard.decide(path, has_token)


# =============================================================================
# NAVIGATION
# =============================================================================

class Navigator:
    """Tracks the current location; every move goes through the guard"""

    def __init__(self, guard: Optional[RouteGuard] = None,
                 token_provider: Optional[Callable[[], Optional[str]]] = None):
        self.guard = guard or RouteGuard()
        self.token_provider = token_provider
        self.current_path: Optional[str] = None
        self.history: List[str] = []
        self._listeners: List[Callable[[str], None]] = []

    def _has_token(self) -> bool:
        return bool(self.token_provider and self.token_provider())

    def navigate(self, path: str) -> str:
        decision, location = self.guard.resolve(path, self._has_token())
        if decision is not GuardDecision.ALLOW:
            logger.debug(f"Guard redirected {path} -> {location}")
        self._go(location)
        return location

    def redirect_to_login(self) -> str:
        logger.info(f"Redirecting to {self.guard.login_path}")
        self._go(self.guard.login_path)
        return self.guard.login_path

    def _go(self, location: str):
        self.current_path = location
        self.history.append(location)
        for listener in list(self._listeners):
            try:
                listener(location)
            except Exception as e:
                logger.error(f"Navigation listener failed: {e}")

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None


# =============================================================================
# AIOHTTP
# =============================================================================

def request_token(request: web.Request, cookie_name: str = 'token') -> Optional[str]:
    """Token from the session cookie or a bearer Authorization header"""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:] or None
    return None


def guard_middleware(guard: Optional[RouteGuard] = None, cookie_name: str = 'token'):
    """aiohttp middleware applying the guard with 302 redirects"""
    guard = guard or RouteGuard()

    @web.middleware
    async def middleware(request, handler):
        decision = guard.decide(request.path, bool(request_token(request, cookie_name)))
        if decision is not GuardDecision.ALLOW:
            location = guard.redirect_target(decision)
            logger.debug(f"Guard: {request.method} {request.path} -> {location}")
            raise web.HTTPFound(location)
        return await handler(request)

    return middleware
