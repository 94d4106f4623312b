import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

@dataclass
class CacheEntry:
    key: str
    value: Any
    fetched_at: float


class ReadCache:
    """Time-to-live memoization for read-only calls

    Entries expire ``ttl`` seconds after they were fetched. The map is
    bounded: once ``max_entries`` is exceeded the least recently used entry
    is evicted. Concurrent callers asking for the same missing key wait on a
    single fetch instead of each hitting the network.
    """

    def __init__(
        self,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}
        self._generations: Dict[str, int] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def _live(self, key: str, ttl: float) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at < ttl:
            self._entries.move_to_end(key)
            return entry
        return None

    def _store(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, fetched_at=self.clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {evicted}")

    async def get(self, key: str, ttl: float, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, fetching it when missing or stale

        The fetched value is stored even when it is None so that persistently
        absent data is not re-requested on every call.
        """
        entry = self._live(key, ttl)
        if entry is not None:
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(key, fetch, self._generations.get(key, 0)))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._drop_inflight(key, done))
        # A cancelled caller must not cancel the fetch other callers wait on
        return await asyncio.shield(task)

    async def _fetch_and_store(self, key: str, fetch: Callable[[], Awaitable[Any]], generation: int) -> Any:
        value = await fetch()
        # Invalidated while fetching: the value may predate a write
        if self._generations.get(key, 0) == generation:
            self._store(key, value)
        else:
            logger.debug(f"Discarded stale fetch for {key}")
        return value

    def _drop_inflight(self, key: str, task: "asyncio.Future[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def invalidate(self, key: str) -> None:
        """Drop key and detach any fetch already running for it

        Callers that joined the running fetch still get its result, but it is
        not stored and later callers start a new fetch.
        """
        self._entries.pop(key, None)
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1

    def clear(self) -> None:
        for key in set(self._entries) | set(self._inflight):
            self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.clear()
        self._inflight.clear()
