"""
Query API routes.
"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.database import get_db
from rainarr.models import Query, QueryGroup, query_results
from rainarr.utils.errors import log_and_raise_500

router = APIRouter(prefix="/api/queries", tags=["queries"])


class QueryFields(BaseModel):
    prowlarr_tag: Optional[str] = None
    target_quality: Optional[str] = None
    search_frequency: Optional[int] = None
    includes_regex: Optional[str] = None
    excludes_regex: Optional[str] = None
    query_group_id: Optional[int] = None


class QueryCreate(QueryFields):
    search_query: str = Field(..., min_length=1)


class BulkQueryCreate(QueryFields):
    """One query per non-empty line of ``queryList``, all sharing the other fields."""
    model_config = ConfigDict(populate_by_name=True)

    query_list: str = Field(..., alias="queryList")


class QueryUpdate(QueryFields):
    search_query: Optional[str] = Field(None, min_length=1)
    download_complete: Optional[bool] = None


def query_to_dict(query: Query) -> Dict[str, Any]:
    group = query.query_group
    return {
        "id": query.id,
        "search_query": query.search_query,
        "prowlarr_tag": query.prowlarr_tag,
        "target_quality": query.target_quality,
        "search_frequency": query.search_frequency,
        "includes_regex": query.includes_regex,
        "excludes_regex": query.excludes_regex,
        "loop_running": query.loop_running,
        "download_complete": query.download_complete,
        "query_group_id": query.query_group_id,
        "query_group_name": group.name if group is not None else None,
    }


def result_to_dict(result) -> Dict[str, Any]:
    return {
        "guid": result.guid,
        "title": result.title,
        "link": result.link,
        "magnet": result.magnet,
        "info": result.info,
        "info_hash": result.info_hash,
        "seeders": result.seeders,
        "leechers": result.leechers,
        "size": result.size,
        "age": result.age,
        "indexer": result.indexer,
        "state": result.state,
        "downloading": result.downloading,
    }


async def _get_query_or_404(db: AsyncSession, query_id: int) -> Query:
    query = await db.get(Query, query_id)
    if query is None:
        raise HTTPException(status_code=404, detail="Query not found")
    return query


async def _check_group(db: AsyncSession, group_id: Optional[int]):
    if group_id is not None and await db.get(QueryGroup, group_id) is None:
        raise HTTPException(status_code=400, detail=f"Query group {group_id} does not exist")


@router.get("")
async def list_queries(query_group_id: Optional[int] = None, db: AsyncSession = Depends(get_db)):
    """List queries, optionally only those of one group."""
    stmt = select(Query).order_by(Query.id)
    if query_group_id is not None:
        stmt = stmt.where(Query.query_group_id == query_group_id)
    queries = (await db.execute(stmt)).scalars().all()
    return [query_to_dict(q) for q in queries]


@router.get("/{query_id}")
async def get_query(query_id: int, db: AsyncSession = Depends(get_db)):
    return query_to_dict(await _get_query_or_404(db, query_id))


@router.post("", status_code=201)
async def create_query(body: QueryCreate, db: AsyncSession = Depends(get_db)):
    await _check_group(db, body.query_group_id)
    query = Query(**body.model_dump())
    db.add(query)
    await db.commit()
    await db.refresh(query, ["query_group"])
    logger.info(f"Created query {query.id}: '{query.search_query}'")
    return query_to_dict(query)


@router.post("/bulk", status_code=201)
async def create_queries_bulk(body: BulkQueryCreate, db: AsyncSession = Depends(get_db)):
    """Create several queries at once from newline separated search strings."""
    await _check_group(db, body.query_group_id)
    shared = body.model_dump(exclude={"query_list"})
    lines = [line.strip() for line in body.query_list.splitlines() if line.strip()]
    if not lines:
        raise HTTPException(status_code=400, detail="queryList is empty")

    created = [Query(search_query=line, **shared) for line in lines]
    db.add_all(created)
    await db.commit()
    for query in created:
        await db.refresh(query, ["query_group"])
    logger.info(f"Created {len(created)} queries")
    return [query_to_dict(q) for q in created]


@router.put("/{query_id}")
async def update_query(query_id: int, body: QueryUpdate, db: AsyncSession = Depends(get_db)):
    query = await _get_query_or_404(db, query_id)
    changes = body.model_dump(exclude_unset=True)
    if "query_group_id" in changes:
        await _check_group(db, changes["query_group_id"])
    for key, value in changes.items():
        setattr(query, key, value)
    await db.commit()
    await db.refresh(query, ["query_group"])
    return query_to_dict(query)


@router.delete("/{query_id}")
async def delete_query(query_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    """Delete a query and drop its scheduled step."""
    await _get_query_or_404(db, query_id)
    await request.app.state.reconciler.scheduler.remove(query_id)
    await db.execute(delete(query_results).where(query_results.c.query_id == query_id))
    await db.execute(delete(Query).where(Query.id == query_id))
    await db.commit()
    logger.info(f"Deleted query {query_id}")
    return {"message": "Query deleted"}


@router.get("/{query_id}/results")
async def get_query_results(query_id: int, request: Request):
    results = await request.app.state.search_service.get_results(query_id)
    return [result_to_dict(r) for r in results]


@router.post("/{query_id}/search")
async def search_query(query_id: int, request: Request):
    """Run the query against the indexers now and store the results."""
    try:
        found = await request.app.state.search_service.search_again(query_id)
        return {"count": len(found), "results": [r.model_dump() for r in found]}
    except Exception as e:
        log_and_raise_500(e, "search indexers")


@router.post("/{query_id}/start-loop")
async def start_query_loop(query_id: int, request: Request):
    try:
        await request.app.state.reconciler.start_query_loop(query_id)
        return {"message": f"Loop started for query {query_id}"}
    except Exception as e:
        log_and_raise_500(e, "start query loop")


@router.post("/{query_id}/stop-loop")
async def stop_query_loop(query_id: int, request: Request):
    try:
        await request.app.state.reconciler.stop_query_loop(query_id)
        return {"message": f"Loop stopped for query {query_id}"}
    except Exception as e:
        log_and_raise_500(e, "stop query loop")


@router.get("/{query_id}/loop-status")
async def get_loop_status(query_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    query = await _get_query_or_404(db, query_id)
    scheduler = request.app.state.reconciler.scheduler
    return {
        "query_id": query_id,
        "loop_running": query.loop_running,
        "download_complete": query.download_complete,
        "queued": query_id in scheduler.queued_query_ids(),
        "event_loop_running": scheduler.is_running,
    }


@router.get("/{query_id}/torrents")
async def get_query_torrents(query_id: int, request: Request):
    """Live client state of every torrent added for this query."""
    try:
        infos = await request.app.state.torrent_service.get_torrent_statuses(query_id=query_id)
        return [info.model_dump() for info in infos]
    except Exception as e:
        log_and_raise_500(e, "get torrents for query")
