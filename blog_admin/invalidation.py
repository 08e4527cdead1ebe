"""
Declarative invalidation table

Each mutation lists the key families it affects. Cross-entity effects are
spelled out here and nowhere else; a mutation that is not in the table cannot
be applied.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .cache import KeyPattern, QueryCache, QueryKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Affects:
    kind: str
    operation: Optional[str] = None
    per_id: bool = False  # only the detail keys of the mutated ids
    drop: bool = False    # remove instead of marking stale

    def patterns(self, ids: Iterable[str]) -> List[KeyPattern]:
        if self.per_id:
            return [KeyPattern.of(self.kind, self.operation or 'detail', {'id': i}) for i in ids]
        return [KeyPattern.of(self.kind, self.operation)]


POST_LISTS = Affects('posts', 'list')
POST_DETAIL = Affects('posts', 'detail', per_id=True)
ALL_POST_DETAILS = Affects('posts', 'detail')
TAG_LISTS = Affects('tags', 'list')
TAG_CATALOGUE = Affects('tags', 'all')
TAG_SEARCH = Affects('tags', 'search')
TAG_DETAIL = Affects('tags', 'detail', per_id=True)
COMMENT_LISTS = Affects('comments', 'list')
COMMENT_STATS = Affects('comments', 'stats')
COMMENT_DETAIL = Affects('comments', 'detail', per_id=True)
ALL_COMMENT_DETAILS = Affects('comments', 'detail')
USER_LISTS = Affects('users', 'list')
USER_DETAIL = Affects('users', 'detail', per_id=True)
AUTH_PROFILE = Affects('auth', 'profile')

TAG_READS = (TAG_LISTS, TAG_CATALOGUE, TAG_SEARCH)
# comments embed a summary of their post
POST_IN_COMMENTS = (COMMENT_LISTS, ALL_COMMENT_DETAILS)
# posts embed their author
USER_IN_POSTS = (POST_LISTS, ALL_POST_DETAILS)

INVALIDATION_RULES: Dict[str, Tuple[Affects, ...]] = {
    # posts; tag post counts change with post membership, deleting a post removes its comments
    'posts.create': (POST_LISTS,) + TAG_READS,
    'posts.update': (POST_LISTS, POST_DETAIL) + TAG_READS + POST_IN_COMMENTS,
    'posts.delete': (POST_LISTS, Affects('posts', 'detail', per_id=True, drop=True)) + TAG_READS
                    + POST_IN_COMMENTS + (COMMENT_STATS,),
    'posts.batch_delete': (POST_LISTS, Affects('posts', 'detail', per_id=True, drop=True)) + TAG_READS
                          + POST_IN_COMMENTS + (COMMENT_STATS,),
    'posts.publish': (POST_LISTS, POST_DETAIL),
    'posts.unpublish': (POST_LISTS, POST_DETAIL),
    'posts.batch_update_status': (POST_LISTS, POST_DETAIL),

    # tags; posts embed their tags
    'tags.create': TAG_READS,
    'tags.update': TAG_READS + (TAG_DETAIL, POST_LISTS, ALL_POST_DETAILS),
    'tags.delete': TAG_READS + (Affects('tags', 'detail', per_id=True, drop=True), POST_LISTS, ALL_POST_DETAILS),
    'tags.batch_delete': TAG_READS + (Affects('tags', 'detail', per_id=True, drop=True), POST_LISTS, ALL_POST_DETAILS),

    # comments
    'comments.create': (COMMENT_LISTS, COMMENT_STATS),
    'comments.update': (COMMENT_LISTS, COMMENT_DETAIL),
    'comments.update_status': (COMMENT_LISTS, COMMENT_STATS, COMMENT_DETAIL),
    'comments.batch_update_status': (COMMENT_LISTS, COMMENT_STATS, COMMENT_DETAIL),
    'comments.delete': (COMMENT_LISTS, COMMENT_STATS, Affects('comments', 'detail', per_id=True, drop=True)),
    'comments.batch_delete': (COMMENT_LISTS, COMMENT_STATS, Affects('comments', 'detail', per_id=True, drop=True)),
    # ids are the parent comment ids
    'comments.reply': (COMMENT_LISTS, COMMENT_STATS, COMMENT_DETAIL),

    # users; the signed-in admin's profile is a user record too, posts embed their author
    'users.create': (USER_LISTS,),
    'users.update': (USER_LISTS, USER_DETAIL, AUTH_PROFILE) + USER_IN_POSTS,
    'users.update_status': (USER_LISTS, USER_DETAIL),
    'users.batch_update_status': (USER_LISTS, USER_DETAIL),
    'users.delete': (USER_LISTS, Affects('users', 'detail', per_id=True, drop=True)) + USER_IN_POSTS,
    'users.batch_delete': (USER_LISTS, Affects('users', 'detail', per_id=True, drop=True)) + USER_IN_POSTS,
    'users.reset_password': (USER_DETAIL,),
    'users.unlock': (USER_LISTS, USER_DETAIL),

    'auth.change_password': (),
}


def rules_for(mutation: str) -> Tuple[Affects, ...]:
    try:
        return INVALIDATION_RULES[mutation]
    except KeyError:
        raise KeyError(f"Mutation '{mutation}' has no invalidation rule")


def affected_keys(cache: QueryCache, mutation: str, ids: Iterable[str] = ()) -> List[QueryKey]:
    """Keys a mutation would touch, without touching them"""
    ids = list(ids)
    keys = set()
    for rule in rules_for(mutation):
        for pattern in rule.patterns(ids):
            keys.update(cache.keys(pattern))
    return sorted(keys, key=str)


def apply_invalidation(cache: QueryCache, mutation: str, ids: Iterable[str] = ()) -> List[QueryKey]:
    """Invalidate or drop every key family the mutation declares"""
    ids = list(ids)
    touched = []
    for rule in rules_for(mutation):
        for pattern in rule.patterns(ids):
            if rule.drop:
                touched.extend(cache.remove(pattern))
            else:
                touched.extend(cache.invalidate(pattern))
    logger.debug(f"{mutation} touched {len(touched)} cache keys")
    return touched
