import logging
from typing import Any, Optional

from ..models import Page, User, UserQuery, UserStatus, normalize_page
from .base import BatchStatusMixin, ResourceService

logger = logging.getLogger(__name__)


class UserService(BatchStatusMixin, ResourceService):
    """Admin user accounts"""

    resource = 'users'
    record_type = User
    query_type = UserQuery

    async def update_status(self, user_id: str, status: Any) -> User:
        status = UserStatus(getattr(status, 'value', status))
        payload = await self._call('update_status',
                                   self.client.patch(f"/users/{user_id}/status", {'status': status.value}))
        return self.parse(payload)

    async def reset_password(self, user_id: str, new_password: str):
        if not new_password:
            raise ValueError("New password must not be empty")
        await self._call('reset_password',
                         self.client.post(f"/users/{user_id}/reset-password", {'newPassword': new_password}))
        logger.info(f"Password reset for user {user_id}")

    async def unlock(self, user_id: str) -> User:
        payload = await self._call('unlock', self.client.post(f"/users/{user_id}/unlock"))
        logger.info(f"Unlocked user {user_id}")
        return self.parse(payload)

    async def get_login_logs(self, user_id: str, page: Optional[int] = None,
                             limit: Optional[int] = None) -> Page:
        payload = await self._call('get_login_logs', self.client.get(
            f"/users/{user_id}/login-logs", params={'page': page, 'limit': limit}))
        return normalize_page(payload)
