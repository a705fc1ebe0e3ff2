"""
Pytest configuration and shared fixtures.
"""
import os
import tempfile

# Set environment variables BEFORE importing the application so the engine
# and logger point at a throwaway directory instead of /data
_temp_base = tempfile.mkdtemp(prefix="rainarr_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_temp_base, 'rainarr.db')}"
os.environ["LOG_DIR"] = os.path.join(_temp_base, "logs")

from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from rainarr.clients.base import TorrentClient, TorrentInfo, TorrentProperties
from rainarr.clients.prowlarr import IndexerResult, ProwlarrClient
from rainarr.database import AsyncSessionLocal, Base, engine
from rainarr.models import Query, QueryGroup, SearchResult, query_results
from rainarr.services.settings_service import SettingsService


@pytest_asyncio.fixture
async def db():
    """Fresh tables for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield AsyncSessionLocal


@pytest_asyncio.fixture
async def settings_service(db):
    service = SettingsService(db)
    await service.initialize()
    return service


@pytest.fixture
def torrent_client():
    """qBittorrent gateway double that knows no torrents."""
    client = AsyncMock(spec=TorrentClient)
    client.authenticate.return_value = True
    client.get_torrent_infos.return_value = []
    client.get_torrent_contents.return_value = []
    client.get_piece_states.return_value = []
    client.get_torrent_properties.return_value = TorrentProperties(piece_size=16384)
    return client


@pytest.fixture
def prowlarr():
    client = AsyncMock(spec=ProwlarrClient)
    client.get_indexer_ids_by_tag.return_value = [1, 2]
    client.search.return_value = []
    return client


def make_info(torrent_hash: str, **fields) -> TorrentInfo:
    values = {"name": f"torrent-{torrent_hash[:6]}", "state": "downloading", "size": 1000}
    values.update(fields)
    return TorrentInfo(hash=torrent_hash, **values)


def make_indexer_result(guid: str, title: str, seeders: int = 5, leechers: int = 1,
                        info_hash: Optional[str] = None, magnet: Optional[str] = None) -> IndexerResult:
    return IndexerResult(
        guid=guid,
        title=title,
        seeders=seeders,
        leechers=leechers,
        infoHash=info_hash,
        magnetUrl=magnet,
        downloadUrl=f"https://indexer.example/dl/{guid}",
        size=1_000_000,
        indexer="TestIndexer",
    )


async def create_query(session_factory, search_query: str = "Foo S01E01", group: Optional[dict] = None, **fields) -> int:
    async with session_factory() as session:
        group_id = None
        if group is not None:
            query_group = QueryGroup(**group)
            session.add(query_group)
            await session.flush()
            group_id = query_group.id
        query = Query(search_query=search_query, query_group_id=group_id, **fields)
        session.add(query)
        await session.commit()
        return query.id


async def add_result(session_factory, query_id: int, guid: str, title: str = "Foo.S01E01.1080p",
                     seeders: int = 5, leechers: int = 1, info_hash: Optional[str] = None,
                     magnet: Optional[str] = None, state: str = "", downloading: bool = False):
    async with session_factory() as session:
        session.add(SearchResult(
            guid=guid, title=title, seeders=seeders, leechers=leechers, info_hash=info_hash,
            magnet=magnet, link=f"https://indexer.example/dl/{guid}", state=state, downloading=downloading,
        ))
        await session.flush()
        await session.execute(query_results.insert().values(query_id=query_id, guid=guid))
        await session.commit()


def magnet_for(info_hash: str, name: str = "Foo") -> str:
    return f"magnet:?xt=urn:btih:{info_hash}&dn={name}"
