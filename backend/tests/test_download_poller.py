"""
Tests for download-start detection.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from rainarr.clients.base import TorrentFile
from rainarr.models import SearchResult, Torrent, TorrentContent
from rainarr.models.result import STATE_ADDED, STATE_DELETED_FROM_CLIENT
from rainarr.services.download_poller import DownloadStartPoller
from rainarr.services.torrent_service import TorrentService

from conftest import add_result, create_query, make_info

HASH_A = "a" * 40
HASH_B = "b" * 40


@pytest_asyncio.fixture
async def torrent_service(db, torrent_client, settings_service):
    service = TorrentService(torrent_client, db, settings_service)
    yield service
    await service.close()


@pytest.fixture
def callback():
    return AsyncMock()


@pytest.fixture
def poller(db, torrent_service, callback):
    return DownloadStartPoller(db, torrent_service, on_download_started=callback, interval=0)


async def test_started_download_marked_and_synced(db, poller, torrent_client, torrent_service, callback):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A, state=STATE_ADDED)
    await torrent_service.mirror_torrents([make_info(HASH_A, state="metaDL")])
    started = make_info(HASH_A, state="downloading", progress=0.2)
    torrent_client.get_torrent_infos.return_value = [started]
    torrent_client.get_torrent_contents.return_value = [
        TorrentFile(index=0, name="Foo.S01E01.mkv", size=50000, piece_range=[0, 3]),
    ]
    torrent_client.get_piece_states.return_value = [2, 1, 0, 0]

    assert await poller.check_download_started() == [HASH_A]

    callback.assert_awaited_once_with(started)
    async with db() as session:
        result = await session.get(SearchResult, "guid-1")
        assert result.downloading is True
        assert result.state == STATE_ADDED
        assert (await session.get(Torrent, HASH_A)).state == "downloading"
        assert await session.get(TorrentContent, f"{HASH_A}_0") is not None


async def test_waiting_torrent_left_alone(db, poller, torrent_client, callback):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A, state=STATE_ADDED)
    torrent_client.get_torrent_infos.return_value = [make_info(HASH_A, state="metaDL")]

    assert await poller.check_download_started() == []

    callback.assert_not_called()
    async with db() as session:
        assert (await session.get(SearchResult, "guid-1")).downloading is False


async def test_removed_from_client(db, poller, torrent_client):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A, state=STATE_ADDED)
    await add_result(db, query_id, "guid-2", info_hash=HASH_B, state=STATE_ADDED)
    torrent_client.get_torrent_infos.return_value = [make_info(HASH_B, state="metaDL")]

    await poller.check_download_started()

    torrent_client.get_torrent_infos.assert_awaited_once()
    assert sorted(torrent_client.get_torrent_infos.await_args.args[0]) == [HASH_A, HASH_B]
    async with db() as session:
        gone = await session.get(SearchResult, "guid-1")
        assert gone.state == STATE_DELETED_FROM_CLIENT
        assert gone.downloading is False
        assert (await session.get(SearchResult, "guid-2")).state == STATE_ADDED


async def test_unreachable_client_changes_nothing(db, poller, torrent_client):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A, state=STATE_ADDED)
    torrent_client.get_torrent_infos.return_value = None

    assert await poller.check_download_started() == []
    async with db() as session:
        assert (await session.get(SearchResult, "guid-1")).state == STATE_ADDED


async def test_nothing_pending_skips_client(db, poller, torrent_client):
    assert await poller.check_download_started() == []
    torrent_client.get_torrent_infos.assert_not_called()
