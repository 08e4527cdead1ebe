from typing import List

from ..models import Tag, TagQuery
from .base import ResourceService


class TagService(ResourceService):
    """Tags, plus the unpaginated catalogue and keyword search"""

    resource = 'tags'
    record_type = Tag
    query_type = TagQuery

    async def get_all(self) -> List[Tag]:
        payload = await self._call('get_all', self.client.get('/tags/all'))
        return [self.parse(item) for item in payload or []]

    async def search(self, keyword: str) -> List[Tag]:
        payload = await self._call('search', self.client.get('/tags/search', params={'q': keyword}))
        return [self.parse(item) for item in payload or []]
