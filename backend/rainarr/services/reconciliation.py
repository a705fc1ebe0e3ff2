"""
Query reconciliation loop.

Every running query owns at most one entry in a shared work queue. A single
ticker pops one entry per interval and runs that query's step to completion;
the step classifies the query's torrents and either waits, searches for a
better download, or finishes the query. Steps re-arm themselves by
re-queueing the query.
"""
import asyncio
import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional, Sequence
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.clients.base import TorrentInfo
from rainarr.constants import (
    COMPETING_TORRENT_MIN_PROGRESS,
    COMPETING_TORRENT_MIN_SPEED_BPS,
    EVENT_LOOP_INTERVAL_SECONDS,
    MIN_DL_SPEED_KBPS,
    STALE_TORRENT_MINUTES,
)
from rainarr.middleware.correlation import bind_correlation_id
from rainarr.models import Query
from rainarr.services.search_service import SearchService
from rainarr.services.settings_service import EVENT_LOOP_RUNNING_KEY, SettingsService
from rainarr.services.torrent_service import TorrentService
from rainarr.utils.errors import NotFoundError

# qBittorrent states
ACTIVE_STATES = frozenset({"checkingDL", "downloading"})
WAITING_STATES = frozenset({"allocating", "metaDL", "queuedDL", "checkingResumeData"})
SEEDING_STATES = frozenset({"queuedUP", "uploading"})


class QueryState(str, Enum):
    NO_TORRENTS = "no_torrents"
    ACTIVE_OR_WAITING = "active_or_waiting"
    COMPLETED = "completed"
    STALLED_OLD = "stalled_old"
    STALLED_SLOW = "stalled_slow"
    HEALTHY_IN_PROGRESS = "healthy_in_progress"


def find_completed(torrents: Sequence[TorrentInfo]) -> Optional[TorrentInfo]:
    return next((t for t in torrents if t.progress == 1 and t.state in SEEDING_STATES), None)


def classify_torrents(
    torrents: Sequence[TorrentInfo],
    now: Optional[float] = None,
    stale_after_minutes: int = STALE_TORRENT_MINUTES,
    min_dl_speed_kbps: int = MIN_DL_SPEED_KBPS,
) -> QueryState:
    """Derive a query's state from a snapshot of its torrents."""
    if not torrents:
        return QueryState.NO_TORRENTS

    if any(t.state in ACTIVE_STATES and abs(t.availability) >= 1 for t in torrents):
        return QueryState.ACTIVE_OR_WAITING
    if all(t.state in WAITING_STATES for t in torrents):
        return QueryState.ACTIVE_OR_WAITING

    if find_completed(torrents) is not None:
        return QueryState.COMPLETED

    now = time.time() if now is None else now
    if all(t.added_on + stale_after_minutes * 60 < now for t in torrents):
        return QueryState.STALLED_OLD
    if all(t.dlspeed < min_dl_speed_kbps * 1000 for t in torrents):
        return QueryState.STALLED_SLOW
    return QueryState.HEALTHY_IN_PROGRESS


def select_torrents_to_delete(torrents: Sequence[TorrentInfo], completed: TorrentInfo) -> List[TorrentInfo]:
    """
    Competing torrents to remove once ``completed`` has finished.

    Only torrents no bigger than the finished one go: those still making
    progress and those that had finished too. Bigger in-progress torrents
    are left alone.
    """
    doomed = []
    for torrent in torrents:
        if torrent.hash == completed.hash or torrent.size > completed.size:
            continue
        downloading = torrent.dlspeed > COMPETING_TORRENT_MIN_SPEED_BPS and torrent.progress > COMPETING_TORRENT_MIN_PROGRESS
        if downloading or torrent.progress == 1:
            doomed.append(torrent)
    return doomed


class QueryScheduler:
    """
    Shared work queue plus the ticker that drains it.

    Holds at most one entry per query id. ``remove`` is idempotent and only
    touches the given query's entry; a step already popped is unaffected.
    """

    def __init__(
        self,
        settings_service: SettingsService,
        handler: Callable[[int], Awaitable[None]],
        retry_failed_ticks: bool = False,
    ):
        self.settings_service = settings_service
        self._handler = handler
        self.retry_failed_ticks = retry_failed_ticks
        self._queue: Deque[int] = deque()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> int:
        return max(self.settings_service.get_int("eventLoopInterval", EVENT_LOOP_INTERVAL_SECONDS), 1)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the ticker and remember that it was running."""
        if not self.is_running:
            self._task = asyncio.create_task(self._run(), name="query_ticker")
            logger.info(f"Event loop started ({self.interval}s interval)")
        await self.settings_service.set_internal(EVENT_LOOP_RUNNING_KEY, "true")

    async def stop(self, persist: bool = True):
        """Stop the ticker; ``persist=False`` keeps the flag for the next startup."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Event loop stopped")
        if persist:
            await self.settings_service.set_internal(EVENT_LOOP_RUNNING_KEY, "false")

    async def enqueue(self, query_id: int) -> bool:
        """Queue a step for the query unless one is already waiting."""
        async with self._lock:
            if query_id in self._queue:
                return False
            self._queue.append(query_id)
        logger.debug(f"Query {query_id} queued")
        return True

    async def remove(self, query_id: int) -> bool:
        async with self._lock:
            if query_id not in self._queue:
                return False
            self._queue.remove(query_id)
        logger.debug(f"Query {query_id} removed from queue")
        return True

    async def _pop(self) -> Optional[int]:
        async with self._lock:
            return self._queue.popleft() if self._queue else None

    def queued_query_ids(self) -> List[int]:
        return list(self._queue)

    async def tick(self) -> Optional[int]:
        """Run the next queued step, if any. Returns the query id it ran."""
        query_id = await self._pop()
        if query_id is None:
            return None

        with bind_correlation_id(f"query-{query_id}"):
            try:
                await self._handler(query_id)
            except Exception as e:
                logger.exception(f"Reconciliation step for query {query_id} failed: {e}")
                if self.retry_failed_ticks:
                    await self.enqueue(query_id)
                else:
                    logger.warning(f"Query {query_id} will not be re-armed until its loop is restarted")
        return query_id

    async def _run(self):
        with bind_correlation_id("ticker"):
            while True:
                await asyncio.sleep(self.interval)
                await self.tick()


class QueryReconciler:
    """Per-query decision policy, run one step at a time by the scheduler."""

    def __init__(
        self,
        get_db_session: Callable[[], AsyncSession],
        settings_service: SettingsService,
        search_service: SearchService,
        torrent_service: TorrentService,
        stale_after_minutes: int = STALE_TORRENT_MINUTES,
        retry_failed_ticks: bool = False,
    ):
        self._get_db_session = get_db_session
        self.settings_service = settings_service
        self.search_service = search_service
        self.torrent_service = torrent_service
        self.stale_after_minutes = stale_after_minutes
        self.scheduler = QueryScheduler(settings_service, self.run_step, retry_failed_ticks)

    async def _get_query(self, query_id: int) -> Optional[Query]:
        async with self._get_db_session() as db:
            return await db.get(Query, query_id)

    async def _set_loop_flags(self, query_id: int, **values):
        async with self._get_db_session() as db:
            await db.execute(update(Query).where(Query.id == query_id).values(**values))
            await db.commit()

    async def run_step(self, query_id: int):
        """Scheduler entry point: skip queries that were stopped or deleted meanwhile."""
        query = await self._get_query(query_id)
        if query is None or not query.loop_running:
            logger.debug(f"Query {query_id} is no longer running, dropping step")
            return
        await self.do_checks(query_id)

    async def do_checks(self, query_id: int) -> QueryState:
        """Evaluate one query, act on the result and re-arm unless it finished."""
        torrents = await self.torrent_service.get_torrent_statuses(query_id=query_id)
        state = classify_torrents(
            torrents,
            stale_after_minutes=self.stale_after_minutes,
            min_dl_speed_kbps=self.settings_service.get_int("minDlSpeed", MIN_DL_SPEED_KBPS),
        )
        logger.info(f"Query {query_id}: {len(torrents)} torrent(s), state {state.value}")

        if state == QueryState.COMPLETED:
            await self.complete_query(query_id, torrents)
            return state

        if state in (QueryState.NO_TORRENTS, QueryState.STALLED_OLD, QueryState.STALLED_SLOW):
            await self.perform_search_and_download(query_id)

        await self.scheduler.enqueue(query_id)
        return state

    async def perform_search_and_download(self, query_id: int):
        await self.search_service.search_again(query_id)
        best = await self.search_service.select_best_not_already_added(query_id)
        if best is None:
            logger.info(f"No new result to add for query {query_id}")
            return
        logger.info(f"Adding '{best.title}' ({best.info_hash}) for query {query_id}")
        await self.torrent_service.add_torrent_from_result(best.guid)

    async def complete_query(self, query_id: int, torrents: Sequence[TorrentInfo]):
        """Drop competing torrents, mark the query done and link the finished files."""
        completed = find_completed(torrents)
        for torrent in select_torrents_to_delete(torrents, completed):
            logger.info(f"Removing competing torrent {torrent.name} ({torrent.hash})")
            await self.torrent_service.remove_torrent(torrent.hash)

        await self._set_loop_flags(query_id, download_complete=True, loop_running=False)
        await self.scheduler.remove(query_id)
        logger.info(f"Query {query_id} completed with {completed.name} ({completed.hash})")

        if self.torrent_service.linker is not None:
            try:
                await self.torrent_service.link_torrent_files(completed.hash)
            except NotFoundError:
                logger.info(f"Query {query_id} has no group directory, not linking")

    async def start_query_loop(self, query_id: int):
        if await self._get_query(query_id) is None:
            raise NotFoundError("Query not found")
        await self._set_loop_flags(query_id, loop_running=True)
        await self.scheduler.enqueue(query_id)
        logger.info(f"Loop started for query {query_id}")

    async def stop_query_loop(self, query_id: int):
        if await self._get_query(query_id) is None:
            raise NotFoundError("Query not found")
        await self._set_loop_flags(query_id, loop_running=False)
        await self.scheduler.remove(query_id)
        logger.info(f"Loop stopped for query {query_id}")

    async def initialize_event_loops(self):
        """Restore the ticker and every running query loop after a restart."""
        if self.settings_service.get_bool(EVENT_LOOP_RUNNING_KEY):
            await self.scheduler.start()

        async with self._get_db_session() as db:
            running = (await db.execute(select(Query.id).where(Query.loop_running.is_(True)))).scalars().all()
        for query_id in running:
            await self.scheduler.enqueue(query_id)
        if running:
            logger.info(f"Restored {len(running)} query loop(s)")
