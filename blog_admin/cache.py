"""
Query cache: keyed reads with stale-while-revalidate, request coalescing,
recency checks, family invalidation and optimistic patches

Every read is keyed by (resource kind, operation, params). A read inside its
staleness window never touches the network; a read past it returns the last
known value and refreshes in the background; an invalidated or missing entry
waits for the network. Every fetch carries a sequence number, and a result
older than the entry's last write, invalidation or patch is never committed.
"""

import asyncio
import hashlib
import itertools
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import (Any, Awaitable, Callable, Dict, Iterable, List, Mapping,
                    Optional, Tuple)

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
Updater = Callable[[Any], Any]


# =============================================================================
# KEYS
# =============================================================================

def _freeze(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items() if v is not None))
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(v) for v in value)
    return value


def freeze_params(params: Any) -> Tuple[Tuple[str, Any], ...]:
    """Canonical, hashable, ordered form of query parameters"""
    if params is None:
        return ()
    if hasattr(params, 'to_params'):
        params = params.to_params()
    return _freeze(dict(params))


@dataclass(frozen=True)
class QueryKey:
    kind: str
    operation: str
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, kind: str, operation: str, params: Any = None) -> 'QueryKey':
        return cls(kind, operation, freeze_params(params))

    @property
    def digest(self) -> str:
        """Stable hash of kind, operation and ordered params"""
        canonical = json.dumps([self.kind, self.operation, self.params], default=str, separators=(',', ':'))
        return hashlib.sha1(canonical.encode('utf-8')).hexdigest()

    def param(self, name: str, default: Any = None) -> Any:
        return dict(self.params).get(name, default)

    def __str__(self):
        return f"{self.kind}/{self.operation}{dict(self.params) if self.params else ''}"


@dataclass(frozen=True)
class KeyPattern:
    """Key family selector: kind, optional operation, optional param subset"""
    kind: str
    operation: Optional[str] = None
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, kind: str, operation: Optional[str] = None, params: Any = None) -> 'KeyPattern':
        return cls(kind, operation, freeze_params(params))

    def matches(self, key: QueryKey) -> bool:
        if key.kind != self.kind:
            return False
        if self.operation is not None and key.operation != self.operation:
            return False
        return all(pair in key.params for pair in self.params)


def as_pattern(selector: Any) -> KeyPattern:
    if isinstance(selector, KeyPattern):
        return selector
    if isinstance(selector, QueryKey):
        return KeyPattern(selector.kind, selector.operation, selector.params)
    raise TypeError(f"Expected QueryKey or KeyPattern, got {type(selector).__name__}")


# =============================================================================
# ENTRIES AND STATE
# =============================================================================

@dataclass
class CacheEntry:
    data: Any = None
    fetched_at: Optional[float] = None
    stale_after: float = 0.0
    error: Optional[BaseException] = None
    invalidated: bool = False
    has_data: bool = False
    write_seq: int = 0  # sequence of the last commit, invalidation or patch

    def is_stale(self, now: float) -> bool:
        if self.invalidated or not self.has_data or self.fetched_at is None:
            return True
        return now - self.fetched_at >= self.stale_after


@dataclass
class QueryState:
    """What a view needs to render a read"""
    status: str  # idle, loading, success, error
    data: Any
    error: Optional[BaseException]
    is_stale: bool
    is_fetching: bool
    fetched_at: Optional[float]


@dataclass
class Snapshot:
    """Pre-patch value of one entry"""
    key: QueryKey
    previous: Any
    seq: int


# =============================================================================
# CACHE
# =============================================================================

class QueryCache:
    """In-memory query cache shared by all query objects of one context"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._inflight: Dict[QueryKey, Tuple[int, asyncio.Task]] = {}
        self._seq = itertools.count(1)
        self._floor = 0  # fetches started before the last clear() are discarded
        self._listeners: List[Callable[[QueryKey], None]] = []

    # -- reads ---------------------------------------------------------------

    async def fetch(self, key: QueryKey, fetcher: Fetcher, stale_time: float = 0.0) -> Any:
        """Read through the cache"""
        entry = self._entries.get(key)
        if entry is not None and entry.has_data and not entry.invalidated:
            if not entry.is_stale(self._clock()):
                logger.debug(f"Cache hit: {key}")
                return entry.data
            logger.debug(f"Cache stale, revalidating in background: {key}")
            self._start_fetch(key, fetcher, stale_time)
            return entry.data

        logger.debug(f"Cache miss: {key}")
        task = self._start_fetch(key, fetcher, stale_time)
        return await asyncio.shield(task)

    async def refetch(self, key: QueryKey, fetcher: Fetcher, stale_time: float = 0.0) -> Any:
        """Force a network read (still coalesced with one already in flight)"""
        return await asyncio.shield(self._start_fetch(key, fetcher, stale_time))

    def _start_fetch(self, key: QueryKey, fetcher: Fetcher, stale_time: float) -> asyncio.Task:
        if key in self._inflight:
            logger.debug(f"Joining in-flight fetch: {key}")
            return self._inflight[key][1]

        seq = next(self._seq)
        task = asyncio.ensure_future(self._run(key, fetcher, stale_time, seq))
        self._inflight[key] = (seq, task)
        task.add_done_callback(lambda t: self._finish(key, t))
        self._emit(key)
        return task

    async def _run(self, key: QueryKey, fetcher: Fetcher, stale_time: float, seq: int) -> Any:
        try:
            data = await fetcher()
        except Exception as e:
            self._record_error(key, seq, e)
            raise
        self._commit(key, seq, data, stale_time)
        return data

    def _finish(self, key: QueryKey, task: asyncio.Task):
        current = self._inflight.get(key)
        if current is not None and current[1] is task:
            del self._inflight[key]
        # Background revalidations have no waiter; mark their errors retrieved
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Fetch failed for {key}: {task.exception()!r}")
        self._emit(key)

    def _is_superseded(self, entry: Optional[CacheEntry], seq: int) -> bool:
        if seq < self._floor:
            return True
        return entry is not None and seq < entry.write_seq

    def _commit(self, key: QueryKey, seq: int, data: Any, stale_time: float):
        entry = self._entries.get(key)
        if self._is_superseded(entry, seq):
            logger.debug(f"Discarding superseded response for {key} (seq {seq})")
            return
        if entry is None:
            entry = self._entries[key] = CacheEntry()
        entry.data = data
        entry.has_data = True
        entry.fetched_at = self._clock()
        entry.stale_after = stale_time
        entry.error = None
        entry.invalidated = False
        entry.write_seq = seq
        logger.debug(f"Cached {key} (seq {seq}, stale after {stale_time}s)")

    def _record_error(self, key: QueryKey, seq: int, error: BaseException):
        entry = self._entries.get(key)
        if self._is_superseded(entry, seq):
            return
        if entry is None:
            entry = self._entries[key] = CacheEntry()
        # Keep the last good data visible
        entry.error = error

    # -- inspection ----------------------------------------------------------

    def state(self, key: QueryKey) -> QueryState:
        entry = self._entries.get(key)
        fetching = key in self._inflight
        if entry is None:
            return QueryState('loading' if fetching else 'idle', None, None, True, fetching, None)

        if entry.error is not None:
            status = 'error'
        elif entry.has_data:
            status = 'success'
        else:
            status = 'loading' if fetching else 'idle'
        return QueryState(status, entry.data if entry.has_data else None, entry.error,
                          entry.is_stale(self._clock()), fetching, entry.fetched_at)

    def get_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry is not None and entry.has_data else None

    def keys(self, selector: Any = None) -> List[QueryKey]:
        if selector is None:
            return list(self._entries)
        pattern = as_pattern(selector)
        return [key for key in self._entries if pattern.matches(key)]

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._inflight

    async def settle(self):
        """Wait for every in-flight fetch, ignoring their outcome"""
        while self._inflight:
            tasks = [task for _, task in self._inflight.values()]
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- writes --------------------------------------------------------------

    def set_data(self, key: QueryKey, data: Any, stale_time: Optional[float] = None):
        """Write a server-confirmed value directly"""
        entry = self._entries.setdefault(key, CacheEntry())
        entry.data = data
        entry.has_data = True
        entry.fetched_at = self._clock()
        if stale_time is not None:
            entry.stale_after = stale_time
        entry.error = None
        entry.invalidated = False
        entry.write_seq = next(self._seq)
        logger.debug(f"Set {key}")
        self._emit(key)

    def invalidate(self, selector: Any) -> List[QueryKey]:
        """Mark a key family stale; the next read waits for fresh data"""
        pattern = as_pattern(selector)
        affected = set(self.keys(pattern)) | {k for k in self._inflight if pattern.matches(k)}
        for key in affected:
            entry = self._entries.setdefault(key, CacheEntry())
            entry.invalidated = True
            entry.write_seq = next(self._seq)
            self._inflight.pop(key, None)
        if affected:
            logger.debug(f"Invalidated {len(affected)} keys for {pattern}")
        for key in affected:
            self._emit(key)
        return sorted(affected, key=str)

    def remove(self, selector: Any) -> List[QueryKey]:
        """Drop a key family"""
        pattern = as_pattern(selector)
        removed = self.keys(pattern)
        for key in removed:
            del self._entries[key]
        for key in [k for k in self._inflight if pattern.matches(k)]:
            # Placeholder so the detached fetch cannot resurrect the entry
            self._entries[key] = CacheEntry(write_seq=next(self._seq))
            del self._inflight[key]
        if removed:
            logger.debug(f"Removed {len(removed)} keys for {pattern}")
        for key in removed:
            self._emit(key)
        return removed

    def clear(self):
        logger.debug(f"Clearing cache ({len(self._entries)} entries)")
        self._entries.clear()
        self._inflight.clear()
        self._floor = next(self._seq)

    # -- optimistic patches --------------------------------------------------

    def patch(self, key: QueryKey, updater: Updater) -> Optional[Snapshot]:
        """Replace a cached value with its expected post-mutation value"""
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return None
        updated = updater(entry.data)
        if updated is None:
            return None
        snapshot = Snapshot(key=key, previous=entry.data, seq=next(self._seq))
        entry.data = updated
        entry.write_seq = snapshot.seq
        logger.debug(f"Optimistically patched {key}")
        self._emit(key)
        return snapshot

    def rollback(self, snapshots: Iterable[Snapshot]):
        """Restore pre-patch values unless newer data has landed since"""
        for snapshot in reversed(list(snapshots)):
            entry = self._entries.get(snapshot.key)
            if entry is None or entry.write_seq != snapshot.seq:
                logger.debug(f"Skipping rollback of {snapshot.key}: superseded")
                continue
            entry.data = snapshot.previous
            entry.write_seq = next(self._seq)
            logger.debug(f"Rolled back {snapshot.key}")
            self._emit(snapshot.key)

    async def optimistic(self, patches: Iterable[Tuple[QueryKey, Updater]],
                         mutation: Callable[[], Awaitable[Any]]) -> Any:
        """Apply patches, run the mutation, roll back if it fails"""
        snapshots = [s for s in (self.patch(key, updater) for key, updater in patches) if s]
        try:
            return await mutation()
        except (Exception, asyncio.CancelledError):
            self.rollback(snapshots)
            raise

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: Callable[[QueryKey], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, key: QueryKey):
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as e:
                logger.error(f"Cache listener failed for {key}: {e}")
