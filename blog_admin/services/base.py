"""
Shared CRUD plumbing for resource services
"""

import logging
from typing import Any, Awaitable, Iterable, List, Mapping, Optional, Type, Union

from ..client import HttpClient
from ..errors import ApiError
from ..models import ListQuery, Page, Record, normalize_page, to_wire

logger = logging.getLogger(__name__)


def batch_ids(ids: Iterable[str]) -> List[str]:
    """Validate a batch id collection: non-empty, duplicates dropped, order kept"""
    if isinstance(ids, (str, bytes)):
        raise TypeError("ids must be a collection of ids, not a single string")
    unique = list(dict.fromkeys(str(i) for i in ids))
    if not unique:
        raise ValueError("Batch operations need at least one id")
    return unique


class ResourceService:
    """REST resource: list, get, create, update, delete, batch delete"""

    resource = ''
    record_type: Type[Record] = Record
    query_type: Type[ListQuery] = ListQuery

    def __init__(self, client: HttpClient):
        self.client = client
        self.base_path = f"/{self.resource}"

    def parse(self, payload: Any) -> Any:
        if isinstance(payload, Mapping):
            return self.record_type.from_dict(payload)
        return payload

    async def _call(self, operation: str, pending: Awaitable[Any]) -> Any:
        """Await a client call; failures are logged and re-raised untouched"""
        try:
            return await pending
        except ApiError as e:
            logger.error(f"{self.resource}.{operation} failed: [{e.kind.value}] {e.message}")
            raise

    async def list(self, query: Optional[ListQuery] = None) -> Page:
        query = query or self.query_type()
        logger.debug(f"Listing {self.resource} with {query}")
        payload = await self._call('list', self.client.get(self.base_path, params=query.to_params()))
        page = normalize_page(payload, self.parse)
        logger.debug(f"Retrieved {len(page.items)} {self.resource} (page {page.page}, total {page.total})")
        return page

    async def get_by_id(self, item_id: str) -> Any:
        payload = await self._call('get_by_id', self.client.get(f"{self.base_path}/{item_id}"))
        return self.parse(payload)

    async def create(self, data: Union[Mapping[str, Any], Record]) -> Any:
        payload = await self._call('create', self.client.post(self.base_path, to_wire(data)))
        record = self.parse(payload)
        logger.info(f"Created {self.resource} {getattr(record, 'id', '?')}")
        return record

    async def update(self, item_id: str, data: Union[Mapping[str, Any], Record]) -> Any:
        payload = await self._call('update', self.client.put(f"{self.base_path}/{item_id}", to_wire(data)))
        return self.parse(payload)

    async def delete(self, item_id: str):
        await self._call('delete', self.client.delete(f"{self.base_path}/{item_id}"))
        logger.info(f"Deleted {self.resource} {item_id}")

    async def batch_delete(self, ids: Iterable[str]) -> List[str]:
        ids = batch_ids(ids)
        await self._call('batch_delete', self.client.delete(f"{self.base_path}/batch", {'ids': ids}))
        logger.info(f"Batch deleted {len(ids)} {self.resource}")
        return ids


class BatchStatusMixin:
    """PATCH /<resource>/batch/status {ids, status}"""

    async def batch_update_status(self, ids: Iterable[str], status: Any) -> List[str]:
        ids = batch_ids(ids)
        status = getattr(status, 'value', status)
        await self._call('batch_update_status',
                         self.client.patch(f"{self.base_path}/batch/status", {'ids': ids, 'status': status}))
        logger.info(f"Batch updated {len(ids)} {self.resource} to {status}")
        return ids
