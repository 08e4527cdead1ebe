"""
Comment moderation service

Status changes go through PATCH /comments/:id/status; the moderation
shortcuts use the dedicated action endpoints.
"""

import logging
from typing import Any, Dict

from ..models import Comment, CommentQuery, CommentStatus
from .base import BatchStatusMixin, ResourceService

logger = logging.getLogger(__name__)

ACTION_STATUS = {
    'approve': CommentStatus.APPROVED,
    'reject': CommentStatus.REJECTED,
    'spam': CommentStatus.SPAM,
}


class CommentService(BatchStatusMixin, ResourceService):

    resource = 'comments'
    record_type = Comment
    query_type = CommentQuery

    async def update_status(self, comment_id: str, status: Any) -> Comment:
        status = CommentStatus(getattr(status, 'value', status))
        payload = await self._call('update_status',
                                   self.client.patch(f"/comments/{comment_id}/status", {'status': status.value}))
        logger.info(f"Comment {comment_id} -> {status.value}")
        return self.parse(payload)

    async def _moderate(self, comment_id: str, action: str) -> Comment:
        payload = await self._call(action, self.client.post(f"/comments/{comment_id}/{action}"))
        logger.info(f"Comment {comment_id} -> {ACTION_STATUS[action].value}")
        return self.parse(payload)

    async def approve(self, comment_id: str) -> Comment:
        return await self._moderate(comment_id, 'approve')

    async def reject(self, comment_id: str) -> Comment:
        return await self._moderate(comment_id, 'reject')

    async def mark_spam(self, comment_id: str) -> Comment:
        return await self._moderate(comment_id, 'spam')

    async def reply(self, comment_id: str, content: str) -> Comment:
        """Reply to a comment as the signed-in admin"""
        if not content or not content.strip():
            raise ValueError("Reply content must not be empty")
        payload = await self._call('reply', self.client.post(f"/comments/{comment_id}/reply", {'content': content}))
        return self.parse(payload)

    async def get_stats(self) -> Dict[str, int]:
        return await self._call('get_stats', self.client.get('/comments/stats')) or {}
