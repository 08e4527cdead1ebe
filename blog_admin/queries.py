"""
Cached reads and invalidating mutations per resource

Reads go through the query cache with a per-read staleness window. Mutations
call the service first; only a confirmed mutation touches the cache, through
the invalidation table, and produces one success notification. Status
toggles on comments and users are applied optimistically and rolled back if
the backend refuses them.
"""

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Tuple

from .cache import KeyPattern, QueryCache, QueryKey, Updater
from .invalidation import apply_invalidation
from .models import (CommentStatus, ListQuery, Page, PostStatus, Record,
                     UserStatus)
from .notifier import Notifier
from .services import (AuthService, CommentService, PostService, TagService,
                       UserService, batch_ids)

logger = logging.getLogger(__name__)

MINUTE = 60

# Staleness windows in seconds
STALE_TIMES = {
    ('posts', 'list'): 5 * MINUTE,
    ('posts', 'detail'): 5 * MINUTE,
    ('tags', 'list'): 5 * MINUTE,
    ('tags', 'detail'): 5 * MINUTE,
    ('tags', 'all'): 10 * MINUTE,
    ('tags', 'search'): 2 * MINUTE,
    ('comments', 'list'): 2 * MINUTE,
    ('comments', 'detail'): 5 * MINUTE,
    ('comments', 'stats'): 5 * MINUTE,
    ('users', 'list'): 5 * MINUTE,
    ('users', 'detail'): 5 * MINUTE,
    ('users', 'login_logs'): 1 * MINUTE,
    ('auth', 'profile'): 5 * MINUTE,
}

PROFILE_KEY = QueryKey.of('auth', 'profile')

MIN_TAG_SEARCH_LENGTH = 2

COLLECTION_OPERATIONS = ('list', 'all', 'search')


def _with_field(record: Any, name: str, value: Any) -> Any:
    if isinstance(record, Record):
        return replace(record, **{name: value})
    if isinstance(record, Mapping):
        return {**record, name: value}
    return record


def _item_id(item: Any) -> Optional[str]:
    if isinstance(item, Mapping):
        return item.get('id')
    return getattr(item, 'id', None)


class ResourceQueries:
    """Cache-aware facade over one resource service"""

    kind = ''
    label = ''

    def __init__(self, service, cache: QueryCache, notifier: Notifier):
        self.service = service
        self.cache = cache
        self.notifier = notifier

    # -- keys ----------------------------------------------------------------

    def list_key(self, query: Optional[ListQuery] = None) -> QueryKey:
        return QueryKey.of(self.kind, 'list', query or self.service.query_type())

    def detail_key(self, item_id: str) -> QueryKey:
        return QueryKey.of(self.kind, 'detail', {'id': str(item_id)})

    def stale_time(self, operation: str) -> float:
        return STALE_TIMES.get((self.kind, operation), 0)

    # -- reads ---------------------------------------------------------------

    async def list(self, query: Optional[ListQuery] = None) -> Page:
        query = query or self.service.query_type()
        return await self.cache.fetch(self.list_key(query), lambda: self.service.list(query),
                                      self.stale_time('list'))

    async def get(self, item_id: str) -> Any:
        return await self.cache.fetch(self.detail_key(item_id), lambda: self.service.get_by_id(item_id),
                                      self.stale_time('detail'))

    # -- mutations -----------------------------------------------------------

    async def _mutate(self, mutation: str, call: Callable[[], Awaitable[Any]],
                      ids: Iterable[str] = (), message: Optional[str] = None,
                      removed: Iterable[str] = ()) -> Any:
        """Run a confirmed mutation and reconcile the cache with it"""
        result = await call()

        removed = list(removed)
        if removed:
            self._prune(removed)
        apply_invalidation(self.cache, f"{self.kind}.{mutation}", ids)
        self._store(result)

        if message:
            self.notifier.success(message)
        return result

    def _store(self, result: Any):
        if isinstance(result, Record) and getattr(result, 'id', None):
            self.cache.set_data(self.detail_key(result.id), result, self.stale_time('detail'))

    def _prune(self, ids: List[str]):
        """Drop deleted records from every cached collection of this kind"""
        gone = set(ids)

        def without(data):
            if isinstance(data, Page):
                kept = [item for item in data.items if _item_id(item) not in gone]
                if len(kept) == len(data.items):
                    return None
                return replace(data, items=kept, total=max(0, data.total - (len(data.items) - len(kept))))
            if isinstance(data, list):
                kept = [item for item in data if _item_id(item) not in gone]
                return kept if len(kept) != len(data) else None
            return None

        for key in self.cache.keys(KeyPattern.of(self.kind)):
            if key.operation in COLLECTION_OPERATIONS:
                self.cache.patch(key, without)

    def _field_patches(self, item_id: str, name: str, value: Any) -> List[Tuple[QueryKey, Updater]]:
        """Detail key plus every cached page that contains the record"""
        item_id = str(item_id)

        def update_page(page):
            if not isinstance(page, Page) or item_id not in page.ids():
                return None
            return replace(page, items=[_with_field(item, name, value) if _item_id(item) == item_id else item
                                        for item in page.items])

        patches = [(self.detail_key(item_id), lambda record: _with_field(record, name, value))]
        patches.extend((key, update_page) for key in self.cache.keys(KeyPattern.of(self.kind, 'list')))
        return patches

    async def _optimistic(self, mutation: str, item_id: str, name: str, value: Any,
                          call: Callable[[], Awaitable[Any]], message: Optional[str] = None) -> Any:
        patches = self._field_patches(item_id, name, value)

        async def confirmed():
            return await self.cache.optimistic(patches, call)

        return await self._mutate(mutation, confirmed, ids=[item_id], message=message)

    async def create(self, data: Any) -> Any:
        return await self._mutate('create', lambda: self.service.create(data),
                                  message=f"{self.label} created successfully")

    async def update(self, item_id: str, data: Any) -> Any:
        return await self._mutate('update', lambda: self.service.update(item_id, data), ids=[item_id],
                                  message=f"{self.label} updated successfully")

    async def delete(self, item_id: str):
        await self._mutate('delete', lambda: self.service.delete(item_id), ids=[item_id],
                           removed=[item_id], message=f"{self.label} deleted successfully")

    async def batch_delete(self, ids: Iterable[str]) -> List[str]:
        ids = batch_ids(ids)
        await self._mutate('batch_delete', lambda: self.service.batch_delete(ids), ids=ids,
                           removed=ids, message=f"{len(ids)} {self.kind} deleted successfully")
        return ids


class PostQueries(ResourceQueries):
    kind = 'posts'
    label = 'Post'

    def __init__(self, service: PostService, cache: QueryCache, notifier: Notifier):
        super().__init__(service, cache, notifier)

    async def publish(self, post_id: str, published_at: Optional[str] = None):
        return await self._mutate('publish', lambda: self.service.publish(post_id, published_at),
                                  ids=[post_id], message="Post published successfully")

    async def unpublish(self, post_id: str):
        return await self._mutate('unpublish', lambda: self.service.unpublish(post_id),
                                  ids=[post_id], message="Post unpublished successfully")

    async def batch_update_status(self, ids: Iterable[str], status: Any) -> List[str]:
        ids = batch_ids(ids)
        status = PostStatus(getattr(status, 'value', status))
        await self._mutate('batch_update_status', lambda: self.service.batch_update_status(ids, status),
                           ids=ids, message=f"{len(ids)} posts updated to {status.value}")
        return ids


class TagQueries(ResourceQueries):
    kind = 'tags'
    label = 'Tag'

    def __init__(self, service: TagService, cache: QueryCache, notifier: Notifier):
        super().__init__(service, cache, notifier)

    async def all(self):
        return await self.cache.fetch(QueryKey.of('tags', 'all'), self.service.get_all, self.stale_time('all'))

    async def search(self, keyword: str):
        keyword = (keyword or '').strip()
        if len(keyword) < MIN_TAG_SEARCH_LENGTH:
            return []
        return await self.cache.fetch(QueryKey.of('tags', 'search', {'q': keyword}),
                                      lambda: self.service.search(keyword), self.stale_time('search'))


COMMENT_STATUS_MESSAGES = {
    CommentStatus.APPROVED: "Comment approved",
    CommentStatus.REJECTED: "Comment rejected",
    CommentStatus.SPAM: "Comment marked as spam",
    CommentStatus.PENDING: "Comment moved back to pending",
}


class CommentQueries(ResourceQueries):
    kind = 'comments'
    label = 'Comment'

    def __init__(self, service: CommentService, cache: QueryCache, notifier: Notifier):
        super().__init__(service, cache, notifier)

    async def stats(self):
        return await self.cache.fetch(QueryKey.of('comments', 'stats'), self.service.get_stats,
                                      self.stale_time('stats'))

    async def update_status(self, comment_id: str, status: Any):
        status = CommentStatus(getattr(status, 'value', status))
        return await self._optimistic('update_status', comment_id, 'status', status,
                                      lambda: self.service.update_status(comment_id, status),
                                      message=COMMENT_STATUS_MESSAGES[status])

    async def approve(self, comment_id: str):
        return await self._optimistic('update_status', comment_id, 'status', CommentStatus.APPROVED,
                                      lambda: self.service.approve(comment_id),
                                      message=COMMENT_STATUS_MESSAGES[CommentStatus.APPROVED])

    async def reject(self, comment_id: str):
        return await self._optimistic('update_status', comment_id, 'status', CommentStatus.REJECTED,
                                      lambda: self.service.reject(comment_id),
                                      message=COMMENT_STATUS_MESSAGES[CommentStatus.REJECTED])

    async def mark_spam(self, comment_id: str):
        return await self._optimistic('update_status', comment_id, 'status', CommentStatus.SPAM,
                                      lambda: self.service.mark_spam(comment_id),
                                      message=COMMENT_STATUS_MESSAGES[CommentStatus.SPAM])

    async def batch_update_status(self, ids: Iterable[str], status: Any) -> List[str]:
        ids = batch_ids(ids)
        status = CommentStatus(getattr(status, 'value', status))
        await self._mutate('batch_update_status', lambda: self.service.batch_update_status(ids, status),
                           ids=ids, message=f"{len(ids)} comments updated to {status.value}")
        return ids

    async def reply(self, comment_id: str, content: str):
        reply = await self._mutate('reply', lambda: self.service.reply(comment_id, content),
                                   ids=[comment_id], message="Reply sent")
        return reply


class UserQueries(ResourceQueries):
    kind = 'users'
    label = 'User'

    def __init__(self, service: UserService, cache: QueryCache, notifier: Notifier):
        super().__init__(service, cache, notifier)

    async def login_logs(self, user_id: str, page: Optional[int] = None, limit: Optional[int] = None):
        key = QueryKey.of('users', 'login_logs', {'id': str(user_id), 'page': page, 'limit': limit})
        return await self.cache.fetch(key, lambda: self.service.get_login_logs(user_id, page, limit),
                                      self.stale_time('login_logs'))

    async def update_status(self, user_id: str, status: Any):
        status = UserStatus(getattr(status, 'value', status))
        return await self._optimistic('update_status', user_id, 'status', status,
                                      lambda: self.service.update_status(user_id, status),
                                      message=f"User set to {status.value}")

    async def batch_update_status(self, ids: Iterable[str], status: Any) -> List[str]:
        ids = batch_ids(ids)
        status = UserStatus(getattr(status, 'value', status))
        await self._mutate('batch_update_status', lambda: self.service.batch_update_status(ids, status),
                           ids=ids, message=f"{len(ids)} users updated to {status.value}")
        return ids

    async def reset_password(self, user_id: str, new_password: str):
        await self._mutate('reset_password', lambda: self.service.reset_password(user_id, new_password),
                           ids=[user_id], message="Password reset successfully")

    async def unlock(self, user_id: str):
        return await self._mutate('unlock', lambda: self.service.unlock(user_id), ids=[user_id],
                                  message="User unlocked")


class AuthQueries:
    """Profile read and password change; login/logout live on the session store"""

    def __init__(self, service: AuthService, cache: QueryCache, notifier: Notifier):
        self.service = service
        self.cache = cache
        self.notifier = notifier

    async def profile(self):
        return await self.cache.fetch(PROFILE_KEY, self.service.get_profile, STALE_TIMES[('auth', 'profile')])

    async def change_password(self, current_password: str, new_password: str):
        await self.service.change_password(current_password, new_password)
        apply_invalidation(self.cache, 'auth.change_password')
        self.notifier.success("Password changed successfully")
