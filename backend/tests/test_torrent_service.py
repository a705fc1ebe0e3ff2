"""
Tests for adding torrents and mirroring client state.
"""
import pytest
import pytest_asyncio
from sqlalchemy import select

from rainarr.clients.base import TorrentFile, TorrentProperties
from rainarr.models import SearchResult, Torrent, TorrentContent
from rainarr.models.result import STATE_ADDED
from rainarr.services.torrent_service import TorrentService
from rainarr.utils.errors import InfoHashMismatchError, InfoHashUnavailableError, NotFoundError

from conftest import add_result, create_query, magnet_for, make_info

HASH_A = "a" * 40
HASH_B = "b" * 40


@pytest_asyncio.fixture
async def service(db, torrent_client, settings_service):
    svc = TorrentService(torrent_client, db, settings_service)
    svc.exist_poll_interval = 0
    svc.exist_max_attempts = 3
    yield svc
    await svc.close()


async def test_mismatched_hash_aborts_without_writes(db, service, torrent_client):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_B, magnet=magnet_for(HASH_A))

    with pytest.raises(InfoHashMismatchError):
        await service.add_torrent_from_result("guid-1")

    torrent_client.add_torrents_by_url.assert_not_called()
    async with db() as session:
        assert (await session.execute(select(Torrent))).scalars().all() == []
        result = await session.get(SearchResult, "guid-1")
        assert result.state == ""


async def test_add_from_result(db, service, torrent_client, settings_service):
    await settings_service.set("defaultTorrentCategory", "rain")
    await settings_service.set("sequentialDownload", "true")
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A.upper(), magnet=magnet_for(HASH_A))
    torrent_client.get_torrent_infos.return_value = [make_info(HASH_A, state="metaDL")]

    info = await service.add_torrent_from_result("guid-1")

    assert info.hash == HASH_A
    urls, options = torrent_client.add_torrents_by_url.call_args.args
    assert urls == [magnet_for(HASH_A)]
    assert options.category == "rain"
    assert options.sequential_download is True
    assert options.first_last_piece_prio is True
    assert options.save_path == "/data/torrents/rainTorrent"
    torrent_client.resume_torrents.assert_awaited_once_with([HASH_A])

    async with db() as session:
        torrent = await session.get(Torrent, HASH_A)
        assert torrent is not None
        assert torrent.state == "metaDL"
        result = await session.get(SearchResult, "guid-1")
        assert result.state == STATE_ADDED
        assert result.info_hash == HASH_A
        assert result.downloading is False


async def test_add_times_out_silently(db, service, torrent_client):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", magnet=magnet_for(HASH_A))

    assert await service.add_torrent_from_result("guid-1") is None
    assert torrent_client.get_torrent_infos.await_count == 3
    torrent_client.resume_torrents.assert_not_called()
    async with db() as session:
        assert await session.get(Torrent, HASH_A) is None


async def test_add_without_any_hash(db, service, torrent_client, monkeypatch):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1")

    async def no_redirect(session, url):
        return url

    async def unreachable(session, uri):
        return None

    monkeypatch.setattr("rainarr.services.torrent_service.find_redirect_url", no_redirect)
    monkeypatch.setattr("rainarr.services.torrent_service.resolve_info_hash", unreachable)

    with pytest.raises(InfoHashUnavailableError):
        await service.add_torrent_from_result("guid-1")
    torrent_client.add_torrents_by_url.assert_not_called()


async def test_add_unknown_result(service):
    with pytest.raises(NotFoundError):
        await service.add_torrent_from_result("missing")


async def test_statuses_annotated_with_queries(db, service, torrent_client):
    group = {"name": "Shows"}
    query_id = await create_query(db, group=group)
    other_query = await create_query(db, "Bar")
    await add_result(db, query_id, "guid-1", info_hash=HASH_A)
    await add_result(db, other_query, "guid-2", info_hash=HASH_B)
    await service.mirror_torrents([make_info(HASH_A), make_info(HASH_B)])
    torrent_client.get_torrent_infos.return_value = [make_info(HASH_A, state="uploading")]

    infos = await service.get_torrent_statuses(query_id=query_id)

    torrent_client.get_torrent_infos.assert_awaited_with([HASH_A])
    assert [i.hash for i in infos] == [HASH_A]
    assert infos[0].query_ids == [query_id]
    assert len(infos[0].query_group_ids) == 1


async def test_statuses_for_query_without_torrents(db, service, torrent_client):
    query_id = await create_query(db)
    assert await service.get_torrent_statuses(query_id=query_id) == []
    torrent_client.get_torrent_infos.assert_not_called()


async def test_update_contents_writes_rows_and_pieces(db, service, torrent_client):
    await service.mirror_torrents([make_info(HASH_A)])
    torrent_client.get_torrent_contents.return_value = [
        TorrentFile(index=0, name="Foo/Foo.S01E01.mkv", size=50000, progress=0.5, piece_range=[0, 3]),
        TorrentFile(name="Foo/sample.txt", size=10, progress=1, piece_range=[3, 3]),
    ]
    torrent_client.get_piece_states.return_value = [2, 2, 1, 0]
    torrent_client.get_torrent_properties.return_value = TorrentProperties(piece_size=16384)

    assert await service.update_torrent_contents(HASH_A) is True

    async with db() as session:
        rows = (await session.execute(select(TorrentContent).order_by(TorrentContent.file_index))).scalars().all()
        assert [r.id for r in rows] == [f"{HASH_A}_0", f"{HASH_A}_1"]
        assert rows[0].piece_range == (0, 3)
        assert rows[0].piece_size == 16384
        torrent = await session.get(Torrent, HASH_A)
        assert list(torrent.pieces) == [2, 2, 1, 0]


async def test_update_contents_skips_when_client_unreachable(db, service, torrent_client):
    await service.mirror_torrents([make_info(HASH_A)])
    torrent_client.get_piece_states.return_value = None
    assert await service.update_torrent_contents(HASH_A) is False


async def test_stop_and_remove(db, service, torrent_client):
    query_id = await create_query(db)
    await add_result(db, query_id, "guid-1", info_hash=HASH_A, state=STATE_ADDED, downloading=True)
    await service.mirror_torrents([make_info(HASH_A)])

    await service.stop_torrent(HASH_A)
    torrent_client.pause_torrents.assert_awaited_once_with([HASH_A])
    async with db() as session:
        assert (await session.get(Torrent, HASH_A)).state == "pausedDL"
        assert (await session.get(SearchResult, "guid-1")).downloading is False

    await service.remove_torrent(HASH_A)
    torrent_client.delete_torrents.assert_awaited_once_with([HASH_A], True)
    async with db() as session:
        assert await session.get(Torrent, HASH_A) is None


async def test_content_layout(db, service, torrent_client):
    await service.mirror_torrents([make_info(HASH_A, save_path="/downloads")])
    torrent_client.get_torrent_contents.return_value = [
        TorrentFile(index=0, name="Foo.mkv", size=55000, progress=0.5, piece_range=[0, 3]),
    ]
    torrent_client.get_piece_states.return_value = [2, 2, 0, 0]
    await service.update_torrent_contents(HASH_A)

    layout = await service.get_content_layout(HASH_A, 0)
    assert layout.path == "/downloads/Foo.mkv"
    assert len(layout.segments) == 4
    assert sum(s.length for s in layout.segments) == 55000

    with pytest.raises(NotFoundError):
        await service.get_content_layout(HASH_A, 5)
