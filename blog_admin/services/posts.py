import logging
from typing import Optional

from ..models import Post, PostQuery
from .base import BatchStatusMixin, ResourceService

logger = logging.getLogger(__name__)


class PostService(BatchStatusMixin, ResourceService):
    """Posts, including publish/unpublish"""

    resource = 'posts'
    record_type = Post
    query_type = PostQuery

    async def publish(self, post_id: str, published_at: Optional[str] = None) -> Post:
        body = {'publishedAt': published_at} if published_at else {}
        payload = await self._call('publish', self.client.post(f"/posts/{post_id}/publish", body))
        logger.info(f"Published post {post_id}")
        return self.parse(payload)

    async def unpublish(self, post_id: str) -> Post:
        payload = await self._call('unpublish', self.client.post(f"/posts/{post_id}/unpublish"))
        logger.info(f"Unpublished post {post_id}")
        return self.parse(payload)
