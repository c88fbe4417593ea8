# local_insight/core/query_cache.py
"""
QUERY CACHE - Keyed, deduplicated, stale-while-revalidate async results

Purpose:
    1. Run at most one fetch per key at a time (concurrent callers share it)
    2. Serve the last success while a stale entry revalidates
    3. Keep failures as an ``error`` state on the entry (no automatic retry)
    4. Tell subscribers about every state transition

State machine per key:
    idle → loading → success | error
    success --(older than stale_time)--> loading (data kept) → success | error
    error   --(next enabled query)-----> loading (data kept) → success | error

Everything runs on one event loop, so no locking is needed: an entry is
only ever written by the task holding its in-flight slot.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from local_insight.core.schemas import QueryStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryKey = Tuple[Any, ...]
Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueryState(Generic[T]):
    """
    Immutable snapshot of one key's state.

    ``fetched_at`` is the clock reading of the last success; it survives
    loading and error states together with ``data`` so consumers can keep
    showing the previous result.
    """

    status: QueryStatus = QueryStatus.IDLE
    data: Optional[T] = None
    error: Optional[BaseException] = None
    fetched_at: Optional[float] = None

    @property
    def is_idle(self) -> bool:
        return self.status is QueryStatus.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status is QueryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    @property
    def has_data(self) -> bool:
        """True once any fetch for this key has succeeded (data may be None)."""
        return self.fetched_at is not None


IDLE = QueryState()

Listener = Callable[[QueryKey, QueryState], None]


@dataclass
class CacheEntry:
    key: QueryKey
    state: QueryState = IDLE
    stale_at: float = 0.0
    task: Optional["asyncio.Task[QueryState]"] = field(default=None, repr=False)

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()


class QueryCache:
    """
    Process-lifetime cache of async results indexed by QueryKey.

    Usage:
        cache = QueryCache()
        state = cache.query(("flood-stations", lat, lng), fetch_stations)  # schedules
        state = await cache.fetch(("flood-stations", lat, lng), fetch_stations)  # waits
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[QueryKey, CacheEntry] = {}
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def query(
        self,
        key: QueryKey,
        fetcher: Fetcher,
        *,
        enabled: bool = True,
        stale_time: float = 0.0,
    ) -> QueryState:
        """
        Return the current state for ``key`` and schedule a fetch if needed.

        Must be called from inside a running event loop.

        Args:
            key: Cache index (namespace tag + parameters)
            fetcher: Zero-argument coroutine function producing the data
            enabled: When False, nothing is scheduled and an idle state is
                returned; an in-flight fetch for the key is left alone
            stale_time: Seconds a success fetched by this call stays fresh;
                an entry keeps the window of the fetch that filled it

        Returns:
            The entry's state after scheduling (loading if a fetch started)
        """
        if not enabled:
            return IDLE

        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CacheEntry(key)

        if not entry.in_flight and self._needs_fetch(entry):
            self._start(entry, fetcher, stale_time)

        return entry.state

    async def fetch(self, key: QueryKey, fetcher: Fetcher, *, stale_time: float = 0.0) -> QueryState:
        """``query`` and wait for the terminal state."""
        self.query(key, fetcher, stale_time=stale_time)
        return await self.wait(key)

    def peek(self, key: QueryKey) -> QueryState:
        """Current state without scheduling anything."""
        entry = self._entries.get(key)
        return entry.state if entry else IDLE

    def is_fetching(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.in_flight)

    async def wait(self, key: QueryKey) -> QueryState:
        """
        Wait for the in-flight fetch of ``key`` (if any) to finish.

        Cancelling the waiter never cancels the shared fetch.
        """
        entry = self._entries.get(key)
        if entry is None:
            return IDLE
        while entry.in_flight:
            await asyncio.wait([entry.task])
        return entry.state

    def entry(self, key: QueryKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register ``listener(key, state)`` for every transition.

        Returns:
            A function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def invalidate(self, key: QueryKey) -> None:
        """Forget ``key``; an in-flight fetch finishes into the detached entry."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _needs_fetch(self, entry: CacheEntry) -> bool:
        state = entry.state
        if state.is_idle or state.is_error:
            return True
        if state.is_success:
            return self._clock() > entry.stale_at
        return False

    def _start(self, entry: CacheEntry, fetcher: Fetcher, stale_time: float) -> None:
        previous = entry.state
        entry.state = QueryState(
            QueryStatus.LOADING, data=previous.data, fetched_at=previous.fetched_at
        )
        loop = asyncio.get_running_loop()
        entry.task = loop.create_task(self._run(entry, fetcher, stale_time, previous))
        self._notify(entry)

    async def _run(
        self,
        entry: CacheEntry,
        fetcher: Fetcher,
        stale_time: float,
        previous: QueryState,
    ) -> QueryState:
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            entry.state = previous
            entry.task = None
            raise
        except Exception as error:
            logger.debug("Query %r failed: %s", entry.key, error)
            entry.state = QueryState(
                QueryStatus.ERROR,
                data=previous.data,
                error=error,
                fetched_at=previous.fetched_at,
            )
        else:
            now = self._clock()
            entry.state = QueryState(QueryStatus.SUCCESS, data=data, fetched_at=now)
            entry.stale_at = now + stale_time

        entry.task = None
        self._notify(entry)
        return entry.state

    def _notify(self, entry: CacheEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry.key, entry.state)
            except Exception:
                logger.exception("Query cache listener failed for %r", entry.key)
