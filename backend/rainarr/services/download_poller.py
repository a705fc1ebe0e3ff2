"""
Download-start detection.

Results that were handed to qBittorrent sit in state "added" until the
client reports the torrent as actually transferring. This loop notices
that moment, syncs the torrent's rows and fires a callback (file linking).
"""
import asyncio
from typing import Awaitable, Callable, List, Optional
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.clients.base import TorrentInfo
from rainarr.constants import DOWNLOAD_POLL_INTERVAL_SECONDS
from rainarr.middleware.correlation import bind_correlation_id
from rainarr.models import SearchResult
from rainarr.models.result import STATE_ADDED
from rainarr.services.torrent_service import TorrentService

# Client states that count as "download started"
STARTED_STATES = frozenset({"downloading", "checking", "seeding"})

DownloadStartedCallback = Callable[[TorrentInfo], Awaitable[None]]


class DownloadStartPoller:
    """Periodic check of added-but-not-downloading results."""

    def __init__(
        self,
        get_db_session: Callable[[], AsyncSession],
        torrent_service: TorrentService,
        on_download_started: Optional[DownloadStartedCallback] = None,
        interval: float = DOWNLOAD_POLL_INTERVAL_SECONDS,
    ):
        self._get_db_session = get_db_session
        self.torrent_service = torrent_service
        self.on_download_started = on_download_started
        self.interval = interval

    async def run(self):
        """Poll forever; a failed cycle is logged and the next one runs on schedule."""
        with bind_correlation_id("poller"):
            logger.info(f"Download-start poller running every {self.interval}s")
            while True:
                try:
                    await self.check_download_started()
                except Exception as e:
                    logger.error(f"Error in download-start poll cycle: {e}")
                await asyncio.sleep(self.interval)

    async def _pending_hashes(self) -> List[str]:
        stmt = (
            select(SearchResult.info_hash)
            .where(SearchResult.state == STATE_ADDED)
            .where(SearchResult.downloading.is_(False))
            .where(SearchResult.info_hash.isnot(None))
            .distinct()
        )
        async with self._get_db_session() as db:
            return [h.lower() for h in (await db.execute(stmt)).scalars().all() if h]

    async def check_download_started(self) -> List[str]:
        """One cycle. Returns the hashes that started downloading."""
        hashes = await self._pending_hashes()
        if not hashes:
            return []

        infos = await self.torrent_service.client.get_torrent_infos(hashes)
        if infos is None:
            logger.warning("qBittorrent unreachable, skipping download-start check")
            return []

        by_hash = {info.hash.lower(): info for info in infos}
        started = []
        for torrent_hash in hashes:
            info = by_hash.get(torrent_hash)
            if info is None:
                logger.info(f"Torrent {torrent_hash} is gone from the client")
                await self.torrent_service.mark_results_deleted_from_client(torrent_hash)
                continue
            if info.state not in STARTED_STATES:
                continue

            logger.info(f"Torrent {info.name} ({torrent_hash}) started downloading")
            await self.torrent_service.mirror_torrents([info])
            await self.torrent_service.update_torrent_contents(torrent_hash)
            await self.torrent_service.mark_results_downloading(torrent_hash)
            started.append(torrent_hash)

            if self.on_download_started is not None:
                await self.on_download_started(info)
        return started
