"""
Tests for indexer searches and best-result selection.
"""
import pytest
from sqlalchemy import func, select

from rainarr.models import SearchResult, Torrent, query_results
from rainarr.models.result import STATE_DELETED_FROM_CLIENT
from rainarr.services.search_service import SearchService, parse_indexer_list
from rainarr.utils.errors import NoIndexersError, NotFoundError

from conftest import add_result, create_query, make_indexer_result


@pytest.fixture
def service(db, prowlarr):
    return SearchService(db, prowlarr, default_tag="default")


def test_parse_indexer_list():
    assert parse_indexer_list("1, 2,,x,3") == [1, 2, 3]
    assert parse_indexer_list(None) == []


async def test_search_persists_and_links_results(db, service, prowlarr):
    query_id = await create_query(db, "Foo S01E01", prowlarr_tag="tv")
    prowlarr.search.return_value = [
        make_indexer_result("g1", "Foo.S01E01.1080p", info_hash="ABCDEF0123"),
        make_indexer_result("g2", "Foo.S01E01.720p"),
    ]

    found = await service.search_again(query_id)
    await service.search_again(query_id)

    assert len(found) == 2
    prowlarr.get_indexer_ids_by_tag.assert_awaited_with("tv")
    prowlarr.search.assert_awaited_with("Foo S01E01", [1, 2])
    async with db() as session:
        assert (await session.execute(select(func.count()).select_from(SearchResult))).scalar_one() == 2
        links = (await session.execute(select(func.count()).select_from(query_results))).scalar_one()
        assert links == 2
        assert (await session.get(SearchResult, "g1")).info_hash == "abcdef0123"


async def test_same_result_links_to_several_queries(db, service, prowlarr):
    first = await create_query(db, "Foo")
    second = await create_query(db, "Foo again")
    prowlarr.search.return_value = [make_indexer_result("shared", "Foo.1080p")]

    await service.search_again(first)
    await service.search_again(second)

    assert [r.guid for r in await service.get_results(first)] == ["shared"]
    assert [r.guid for r in await service.get_results(second)] == ["shared"]


async def test_tag_falls_back_to_group_then_default(db, service, prowlarr):
    grouped = await create_query(db, group={"name": "Shows", "prowlarr_tag": "shows"})
    ungrouped = await create_query(db, "Bar")

    await service.search_again(grouped)
    prowlarr.get_indexer_ids_by_tag.assert_awaited_with("shows")
    await service.search_again(ungrouped)
    prowlarr.get_indexer_ids_by_tag.assert_awaited_with("default")


async def test_explicit_indexers_when_tag_unresolved(db, service, prowlarr):
    query_id = await create_query(db, group={"name": "Shows", "indexers": "4,5"})
    prowlarr.get_indexer_ids_by_tag.return_value = []

    await service.search_again(query_id)

    prowlarr.search.assert_awaited_with("Foo S01E01", [4, 5])


async def test_no_indexers(db, service, prowlarr):
    query_id = await create_query(db)
    prowlarr.get_indexer_ids_by_tag.return_value = []
    with pytest.raises(NoIndexersError):
        await service.search_again(query_id)
    prowlarr.search.assert_not_called()


async def test_unknown_query(service):
    with pytest.raises(NotFoundError):
        await service.search_again(999)


async def test_select_best_skips_added_deleted_and_unhashed(db, service):
    query_id = await create_query(db, includes_regex="1080p")
    await add_result(db, query_id, "added", seeders=90, info_hash="a" * 40)
    await add_result(db, query_id, "deleted", seeders=80, info_hash="b" * 40, state=STATE_DELETED_FROM_CLIENT)
    await add_result(db, query_id, "sd", title="Foo.S01E01.480p", seeders=70, info_hash="c" * 40)
    await add_result(db, query_id, "unhashed", seeders=60)
    await add_result(db, query_id, "best", seeders=10, leechers=2, info_hash="d" * 40)
    await add_result(db, query_id, "worse", seeders=1, leechers=20, info_hash="e" * 40)
    async with db() as session:
        session.add(Torrent(hash="a" * 40, name="already there"))
        await session.commit()

    best = await service.select_best_not_already_added(query_id)

    assert best.guid == "best"
