"""
Torrent orchestration: adding results to qBittorrent and mirroring its state.

Gateway reads that fail are logged and come back empty; the operations
here that act on behalf of a caller (add, pause, resume, remove) propagate.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import aiohttp
from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.clients.base import AddTorrentOptions, TorrentClient, TorrentFile, TorrentInfo
from rainarr.constants import (
    HTTP_CLIENT_TIMEOUT_SECONDS,
    TORRENT_EXIST_MAX_ATTEMPTS,
    TORRENT_EXIST_POLL_INTERVAL_SECONDS,
)
from rainarr.models import Query, QueryGroup, SearchResult, Torrent, TorrentContent, query_results
from rainarr.models.result import STATE_ADDED, STATE_DELETED_FROM_CLIENT
from rainarr.models.torrent import encode_piece_states
from rainarr.services.linker import FileLinker, LinkedFile, join_under
from rainarr.services.piece_resolver import FileSpan, Segment, torrent_file_segments
from rainarr.services.settings_service import SettingsService
from rainarr.utils.errors import (
    InfoHashMismatchError,
    InfoHashUnavailableError,
    NotFoundError,
    TorrentClientError,
)
from rainarr.utils.infohash import find_redirect_url, info_hash_from_magnet, resolve_info_hash

DEFAULT_SAVE_PATH = "/data/torrents/rainTorrent"

# Torrent columns mirrored from qBittorrent
MIRRORED_FIELDS = (
    "name", "category", "added_on", "completion_on", "last_activity", "seen_complete",
    "time_active", "total_size", "size", "progress", "availability", "dlspeed", "upspeed",
    "eta", "num_seeds", "num_leechs", "num_complete", "num_incomplete", "priority",
    "f_l_piece_prio", "force_start", "seq_dl", "save_path", "state", "tags", "tracker",
)


@dataclass
class ContentLayout:
    """A file inside a torrent, located on disk and split into piece segments."""
    torrent_hash: str
    file_index: int
    name: str
    path: str
    size: int
    progress: float
    piece_size: int
    segments: List[Segment] = field(default_factory=list)


def torrent_row_values(info: TorrentInfo) -> Dict[str, object]:
    """Column values for a Torrent row from a client record."""
    values = {field: getattr(info, field) for field in MIRRORED_FIELDS}
    values["hash"] = info.hash.lower()
    return values


def content_row_values(torrent_hash: str, position: int, item: TorrentFile, piece_size: int) -> Dict[str, object]:
    """Column values for a TorrentContent row from a client file record."""
    index = item.index if item.index is not None else position
    piece_range = list(item.piece_range) + [0, 0]
    return {
        "id": TorrentContent.make_id(torrent_hash, index),
        "torrent_hash": torrent_hash,
        "file_index": index,
        "name": item.name,
        "size": item.size,
        "progress": item.progress,
        "priority": item.priority,
        "is_seed": bool(item.is_seed),
        "piece_range_start": piece_range[0],
        "piece_range_end": piece_range[1],
        "piece_size": piece_size,
        "availability": item.availability,
    }


class TorrentService:
    """Adds torrents, keeps Torrent/TorrentContent rows in line with the client."""

    def __init__(
        self,
        client: TorrentClient,
        get_db_session: Callable[[], AsyncSession],
        settings_service: SettingsService,
        linker: Optional[FileLinker] = None,
    ):
        self.client = client
        self._get_db_session = get_db_session
        self.settings_service = settings_service
        self.linker = linker
        self.exist_poll_interval = TORRENT_EXIST_POLL_INTERVAL_SECONDS
        self.exist_max_attempts = TORRENT_EXIST_MAX_ATTEMPTS
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """HTTP session for fetching .torrent files and following redirects."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=HTTP_CLIENT_TIMEOUT_SECONDS)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Adding
    # ------------------------------------------------------------------

    async def derive_info_hash(self, link: str, magnet: Optional[str]) -> Optional[str]:
        info_hash = await resolve_info_hash(self.session, link) if link else None
        if not info_hash and magnet:
            info_hash = info_hash_from_magnet(magnet)
        return info_hash

    async def add_torrent_from_result(self, guid: str) -> Optional[TorrentInfo]:
        """
        Send a search result to qBittorrent and record the torrent.

        Raises InfoHashMismatchError before anything is written when the
        indexer's declared hash disagrees with the one behind the link.
        Returns None when the torrent never showed up in the client.
        """
        async with self._get_db_session() as db:
            result = await db.get(SearchResult, guid)
            if result is None:
                raise NotFoundError("Result not found")
            source = result.magnet or result.link or ""
            magnet = result.magnet
            declared = result.info_hash.lower() if result.info_hash else None
            title = result.title

        link = await find_redirect_url(self.session, source) if source else ""
        info_hash = await self.derive_info_hash(link, magnet)

        if declared and declared != info_hash:
            raise InfoHashMismatchError(declared, info_hash)
        if not info_hash:
            raise InfoHashUnavailableError(
                "No infohash found, tracker may be down or link points to an invalid torrent."
            )

        logger.info(f"Adding '{title}' ({info_hash}) to qBittorrent")
        info = await self.add_torrent(link, info_hash)
        if info is None:
            return None

        async with self._get_db_session() as db:
            await self._upsert_torrent(db, info)
            await db.execute(
                update(SearchResult)
                .where(SearchResult.guid == guid)
                .values(info_hash=info_hash, downloading=False, state=STATE_ADDED)
            )
            await db.commit()

        await self.client.resume_torrents([info_hash])
        return info

    async def add_torrent(self, url: str, info_hash: str, category: Optional[str] = None) -> Optional[TorrentInfo]:
        """Add by URL with the configured defaults and wait for it to appear."""
        if not await self.client.authenticate():
            raise TorrentClientError("Could not authenticate with qBittorrent")

        options = AddTorrentOptions(
            category=category or self.settings_service.get("defaultTorrentCategory"),
            save_path=self.settings_service.get("torrentClientSavePath", DEFAULT_SAVE_PATH),
            sequential_download=self.settings_service.get_bool("sequentialDownload"),
            first_last_piece_prio=True,
        )
        logger.debug(f"Adding torrent with category={options.category} save_path={options.save_path}")
        await self.client.add_torrents_by_url([url], options)
        return await self.poll_for_torrent_exist_in_client(info_hash)

    async def poll_for_torrent_exist_in_client(self, info_hash: str) -> Optional[TorrentInfo]:
        """Bounded wait for a freshly added torrent; None when it never shows up."""
        for _ in range(self.exist_max_attempts):
            infos = await self.client.get_torrent_infos([info_hash]) or []
            found = next((t for t in infos if t.hash.lower() == info_hash), None)
            if found is not None:
                return found
            await asyncio.sleep(self.exist_poll_interval)

        logger.error(f"Torrent {info_hash} did not appear in the client within the expected time")
        return None

    # ------------------------------------------------------------------
    # Mirroring
    # ------------------------------------------------------------------

    async def _upsert_torrent(self, db: AsyncSession, info: TorrentInfo) -> Torrent:
        values = torrent_row_values(info)
        row = await db.get(Torrent, values["hash"])
        if row is None:
            row = Torrent(piece_states="", **values)
            db.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)
        return row

    async def mirror_torrents(self, infos: Iterable[TorrentInfo]):
        """Overwrite Torrent rows with fresh client state."""
        async with self._get_db_session() as db:
            for info in infos:
                await self._upsert_torrent(db, info)
            await db.commit()

    async def update_torrent_contents(self, torrent_hash: str) -> bool:
        """Refresh TorrentContent rows and the piece-state blob for one torrent."""
        contents = await self.client.get_torrent_contents(torrent_hash)
        pieces = await self.client.get_piece_states(torrent_hash)
        properties = await self.client.get_torrent_properties(torrent_hash)
        if contents is None or pieces is None or properties is None:
            logger.warning(f"Skipping content sync for {torrent_hash}: client data unavailable")
            return False

        try:
            async with self._get_db_session() as db:
                torrent = await db.get(Torrent, torrent_hash)
                if torrent is None:
                    logger.warning(f"Skipping content sync for unknown torrent {torrent_hash}")
                    return False

                for position, item in enumerate(contents):
                    values = content_row_values(torrent_hash, position, item, properties.piece_size)
                    row = await db.get(TorrentContent, values["id"])
                    if row is None:
                        db.add(TorrentContent(**values))
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)

                torrent.piece_states = encode_piece_states(pieces)
                await db.commit()
        except Exception as e:
            logger.error(f"Error updating contents of {torrent_hash}: {e}")
            return False

        logger.debug(f"Synced {len(contents)} file(s) and {len(pieces)} piece(s) for {torrent_hash}")
        return True

    async def mark_results_downloading(self, torrent_hash: str):
        async with self._get_db_session() as db:
            await db.execute(
                update(SearchResult)
                .where(SearchResult.info_hash == torrent_hash)
                .values(state=STATE_ADDED, downloading=True)
            )
            await db.commit()

    async def mark_results_deleted_from_client(self, torrent_hash: str):
        async with self._get_db_session() as db:
            await db.execute(
                update(SearchResult)
                .where(SearchResult.info_hash == torrent_hash)
                .values(state=STATE_DELETED_FROM_CLIENT, downloading=False)
            )
            await db.commit()

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    async def find_torrents(
        self,
        hashes: Optional[List[str]] = None,
        query_id: Optional[int] = None,
        category: Optional[str] = None,
        query_group_id: Optional[int] = None,
    ) -> Dict[str, Tuple[List[int], List[Optional[int]]]]:
        """Known torrent hashes matching the filters, with the queries/groups they belong to."""
        stmt = (
            select(Torrent.hash, Query.id, Query.query_group_id)
            .select_from(Torrent)
            .outerjoin(SearchResult, SearchResult.info_hash == Torrent.hash)
            .outerjoin(query_results, query_results.c.guid == SearchResult.guid)
            .outerjoin(Query, Query.id == query_results.c.query_id)
        )
        if hashes:
            stmt = stmt.where(Torrent.hash.in_([h.lower() for h in hashes]))
        if query_id is not None:
            stmt = stmt.where(Query.id == query_id)
        if category is not None:
            stmt = stmt.where(Torrent.category == category)
        if query_group_id is not None:
            stmt = stmt.where(Query.query_group_id == query_group_id)

        async with self._get_db_session() as db:
            rows = (await db.execute(stmt)).all()

        found: Dict[str, Tuple[List[int], List[Optional[int]]]] = {}
        for torrent_hash, qid, group_id in rows:
            query_ids, group_ids = found.setdefault(torrent_hash, ([], []))
            if qid is not None and qid not in query_ids:
                query_ids.append(qid)
                group_ids.append(group_id)
        return found

    async def get_torrent_statuses(self, **filters) -> List[TorrentInfo]:
        """Live client state for known torrents, annotated with query/group ids."""
        known = await self.find_torrents(**filters)
        if not known:
            logger.debug("No torrents found")
            return []

        infos = await self.client.get_torrent_infos(list(known))
        if infos is None:
            raise TorrentClientError("qBittorrent is unreachable")

        for info in infos:
            query_ids, group_ids = known.get(info.hash.lower(), ([], []))
            info.query_ids = list(query_ids)
            info.query_group_ids = list(group_ids)
        return infos

    async def update_torrent_statuses(self, **filters) -> List[TorrentInfo]:
        """Like get_torrent_statuses, also refreshing rows and file contents."""
        infos = await self.get_torrent_statuses(**filters)
        await self.mirror_torrents(infos)
        for info in infos:
            await self.update_torrent_contents(info.hash)
        return infos

    async def get_torrent_info(self, hashes: List[str]) -> Optional[List[TorrentInfo]]:
        await self.client.authenticate()
        return await self.client.get_torrent_infos(hashes)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def stop_torrent(self, torrent_hash: str):
        await self.client.pause_torrents([torrent_hash])
        async with self._get_db_session() as db:
            await db.execute(update(Torrent).where(Torrent.hash == torrent_hash).values(state="pausedDL"))
            result = await db.execute(
                update(SearchResult).where(SearchResult.info_hash == torrent_hash).values(downloading=False)
            )
            await db.commit()
        if not result.rowcount:
            logger.warning(f"No search result found for paused torrent {torrent_hash}")
        logger.info(f"Torrent {torrent_hash} paused")

    async def start_torrent(self, torrent_hash: str):
        await self.client.resume_torrents([torrent_hash])
        logger.info(f"Torrent {torrent_hash} resumed")

    async def remove_torrent(self, torrent_hash: str):
        """Delete from the client (with files) and forget the torrent."""
        await self.client.delete_torrents([torrent_hash], True)
        async with self._get_db_session() as db:
            await db.execute(delete(TorrentContent).where(TorrentContent.torrent_hash == torrent_hash))
            removed = await db.execute(delete(Torrent).where(Torrent.hash == torrent_hash))
            if removed.rowcount:
                await db.execute(
                    update(SearchResult).where(SearchResult.info_hash == torrent_hash).values(downloading=False)
                )
            await db.commit()
        logger.info(f"Torrent {torrent_hash} removed from client and database")

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    async def get_group_name(self, torrent_hash: str) -> Optional[str]:
        """Name of the first query group that led to this torrent."""
        stmt = (
            select(QueryGroup.name)
            .join(Query, Query.query_group_id == QueryGroup.id)
            .join(query_results, query_results.c.query_id == Query.id)
            .join(SearchResult, SearchResult.guid == query_results.c.guid)
            .where(SearchResult.info_hash == torrent_hash)
            .order_by(Query.id)
            .limit(1)
        )
        async with self._get_db_session() as db:
            return (await db.execute(stmt)).scalar_one_or_none()

    async def link_torrent_files(self, torrent_hash: str, destination_dir: Optional[str] = None) -> List[LinkedFile]:
        """Hardlink finished media files into the group's directory and record the paths."""
        if self.linker is None:
            raise RuntimeError("No file linker configured")

        destination_dir = destination_dir or await self.get_group_name(torrent_hash)
        if not destination_dir:
            raise NotFoundError("Query group name not found")

        contents = await self.client.get_torrent_contents(torrent_hash)
        infos = await self.client.get_torrent_infos([torrent_hash])
        if not contents or not infos:
            logger.warning(f"Nothing to link for {torrent_hash}: client returned no data")
            return []

        linked = await self.linker.link_files(contents, infos[0].save_path, destination_dir)
        if linked:
            await self.record_hardlinks(torrent_hash, linked)
        return linked

    async def record_hardlinks(self, torrent_hash: str, linked: List[LinkedFile]):
        async with self._get_db_session() as db:
            for item in linked:
                await db.execute(
                    update(TorrentContent)
                    .where(TorrentContent.id == TorrentContent.make_id(torrent_hash, item.index))
                    .values(hardlink_path=item.destination)
                )
            await db.commit()

    # ------------------------------------------------------------------
    # File layout
    # ------------------------------------------------------------------

    def content_path(self, save_path: Optional[str], name: str) -> str:
        """Where a torrent's file lives as seen from this process."""
        base = self.settings_service.get("torrentClientBasePath", "")
        return join_under(base or "/", save_path or "", name)

    async def get_contents(self, torrent_hash: str) -> List[TorrentContent]:
        async with self._get_db_session() as db:
            if await db.get(Torrent, torrent_hash) is None:
                raise NotFoundError("Torrent not found")
            stmt = (
                select(TorrentContent)
                .where(TorrentContent.torrent_hash == torrent_hash)
                .order_by(TorrentContent.file_index)
            )
            return list((await db.execute(stmt)).scalars().all())

    async def get_content_layout(self, torrent_hash: str, file_index: int) -> ContentLayout:
        """A file's on-disk path, size and per-piece byte segments."""
        async with self._get_db_session() as db:
            torrent = await db.get(Torrent, torrent_hash)
            if torrent is None:
                raise NotFoundError("Torrent not found")
            pieces = torrent.pieces
            save_path = torrent.save_path
            rows = (
                await db.execute(
                    select(TorrentContent)
                    .where(TorrentContent.torrent_hash == torrent_hash)
                    .order_by(TorrentContent.file_index)
                )
            ).scalars().all()

        content = next((row for row in rows if row.file_index == file_index), None)
        if content is None:
            raise NotFoundError("File not found in torrent")

        piece_size = content.piece_size or 0
        segments = []
        if piece_size > 0:
            spans = [FileSpan(r.file_index, r.size, r.piece_range_start, r.piece_range_end) for r in rows]
            segments = torrent_file_segments(pieces, spans, piece_size).get(file_index, [])

        return ContentLayout(
            torrent_hash=torrent_hash,
            file_index=file_index,
            name=content.name,
            path=self.content_path(save_path, content.name),
            size=content.size,
            progress=content.progress or 0.0,
            piece_size=piece_size,
            segments=segments,
        )
