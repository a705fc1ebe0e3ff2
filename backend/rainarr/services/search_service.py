"""
Indexer searches for queries and selection of the next result to add.
"""
from typing import Callable, List, Optional
from loguru import logger
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.clients.prowlarr import IndexerResult, ProwlarrClient
from rainarr.models import Query, SearchResult, Torrent, query_results
from rainarr.models.result import STATE_DELETED_FROM_CLIENT, STATE_NEW
from rainarr.services.ranking import QueryRules, resolve_query_rules, select_best
from rainarr.utils.errors import NoIndexersError, NotFoundError


def parse_indexer_list(indexers: Optional[str]) -> List[int]:
    """Parse a comma separated indexer id list, ignoring blanks and junk."""
    ids = []
    for part in (indexers or "").split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids


class SearchService:
    """Runs indexer searches and picks the best unseen result."""

    def __init__(
        self,
        get_db_session: Callable[[], AsyncSession],
        prowlarr: ProwlarrClient,
        default_tag: Optional[str] = None,
    ):
        self._get_db_session = get_db_session
        self.prowlarr = prowlarr
        self.default_tag = default_tag

    async def _load_query(self, db: AsyncSession, query_id: int) -> Query:
        query = await db.get(Query, query_id)
        if query is None:
            raise NotFoundError("Query not found")
        return query

    async def resolve_indexers(self, rules: QueryRules) -> List[int]:
        """Indexer ids from the query/group/default tag, else the group's explicit list."""
        tag = rules.prowlarr_tag or self.default_tag
        if tag:
            ids = await self.prowlarr.get_indexer_ids_by_tag(tag)
            if ids:
                return ids
        ids = parse_indexer_list(rules.indexers)
        if not ids:
            raise NoIndexersError(f"No indexers configured for '{rules.search_query}'")
        return ids

    async def search_again(self, query_id: int) -> List[IndexerResult]:
        """Search the indexers for a query and persist what comes back."""
        async with self._get_db_session() as db:
            rules = resolve_query_rules(await self._load_query(db, query_id))

        indexer_ids = await self.resolve_indexers(rules)
        logger.info(f"Searching '{rules.search_query}' on indexers {indexer_ids}")
        found = await self.prowlarr.search(rules.search_query, indexer_ids)
        if not found:
            return []

        async with self._get_db_session() as db:
            for item in found:
                values = item.model_dump(exclude={"guid"})
                await db.execute(
                    insert(SearchResult)
                    .values(guid=item.guid, state=STATE_NEW, downloading=False, **values)
                    .on_conflict_do_nothing(index_elements=[SearchResult.guid])
                )
                await db.execute(
                    insert(query_results)
                    .values(query_id=query_id, guid=item.guid)
                    .on_conflict_do_nothing()
                )
            await db.commit()

        logger.debug(f"Stored {len(found)} result(s) for query {query_id}")
        return found

    async def get_results(self, query_id: int) -> List[SearchResult]:
        async with self._get_db_session() as db:
            await self._load_query(db, query_id)
            stmt = (
                select(SearchResult)
                .join(query_results, query_results.c.guid == SearchResult.guid)
                .where(query_results.c.query_id == query_id)
                .order_by(SearchResult.seeders.desc())
            )
            return list((await db.execute(stmt)).scalars().all())

    async def select_best_not_already_added(self, query_id: int) -> Optional[SearchResult]:
        """Highest-scored result for the query that has not been added or deleted."""
        async with self._get_db_session() as db:
            rules = resolve_query_rules(await self._load_query(db, query_id))
            stmt = (
                select(SearchResult)
                .join(query_results, query_results.c.guid == SearchResult.guid)
                .where(query_results.c.query_id == query_id)
                .where(SearchResult.state != STATE_DELETED_FROM_CLIENT)
                .order_by(SearchResult.created_at, SearchResult.guid)
            )
            candidates = list((await db.execute(stmt)).scalars().all())
            known = (await db.execute(select(Torrent.hash))).scalars().all()

        return select_best(candidates, rules, known)
