"""
Authentication endpoints
Token storage is the session store's job; this service only talks HTTP.
"""

import logging
from collections.abc import Mapping

from ..client import HttpClient
from ..errors import ApiError
from ..models import Session, User

logger = logging.getLogger(__name__)


def _session_from(payload, action: str) -> Session:
    if not isinstance(payload, Mapping):
        logger.error(f"{action} response payload is not an object: {type(payload).__name__}")
        raise ApiError(f"{action} response was malformed", 502)
    session = Session.from_login(payload)
    if not session.token:
        raise ApiError(f"{action} response did not contain a token", 502)
    return session


class AuthService:
    """Login, logout, token refresh, profile and password change"""

    def __init__(self, client: HttpClient):
        self.client = client

    async def login(self, username: str, password: str, remember_me: bool = False) -> Session:
        logger.debug(f"Login attempt for username: {username}")
        body = {'username': username, 'password': password}
        if remember_me:
            body['rememberMe'] = True
        payload = await self.client.post('/auth/login', body)
        session = _session_from(payload, 'Login')
        logger.info(f"Login successful for user: {session.username}")
        return session

    async def logout(self, refresh_token: str):
        """Best-effort server notification; no user notification on failure"""
        await self.client.post('/auth/logout', {'refreshToken': refresh_token}, notify=False)

    async def refresh(self, refresh_token: str) -> Session:
        payload = await self.client.post('/auth/refresh', {'refreshToken': refresh_token})
        session = _session_from(payload, 'Refresh')
        logger.debug(f"Token refreshed for user: {session.username}")
        return session

    async def get_profile(self) -> User:
        payload = await self.client.get('/auth/profile')
        return User.from_dict(payload or {})

    async def change_password(self, current_password: str, new_password: str):
        await self.client.post('/auth/change-password', {
            'currentPassword': current_password,
            'newPassword': new_password,
        })
        logger.info("Password changed")
