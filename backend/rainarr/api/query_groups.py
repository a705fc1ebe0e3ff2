"""
Query group API routes.
"""
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.database import get_db
from rainarr.models import Query, QueryGroup

router = APIRouter(prefix="/api/querygroups", tags=["querygroups"])


class QueryGroupBody(BaseModel):
    name: Optional[str] = None
    source_url: Optional[str] = None
    scraper_url: Optional[str] = None
    prowlarr_tag: Optional[str] = None
    indexers: Optional[str] = None
    target_quality: Optional[str] = None
    search_frequency: Optional[int] = None
    includes_regex: Optional[str] = None
    excludes_regex: Optional[str] = None


def group_to_dict(group: QueryGroup, query_count: int = 0) -> Dict[str, Any]:
    return {
        "id": group.id,
        "name": group.name,
        "source_url": group.source_url,
        "scraper_url": group.scraper_url,
        "prowlarr_tag": group.prowlarr_tag,
        "indexers": group.indexers,
        "target_quality": group.target_quality,
        "search_frequency": group.search_frequency,
        "includes_regex": group.includes_regex,
        "excludes_regex": group.excludes_regex,
        "query_count": query_count,
    }


async def _get_group_or_404(db: AsyncSession, group_id: int) -> QueryGroup:
    group = await db.get(QueryGroup, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Query group not found")
    return group


async def _count_queries(db: AsyncSession, group_id: int) -> int:
    stmt = select(func.count(Query.id)).where(Query.query_group_id == group_id)
    return (await db.execute(stmt)).scalar_one()


@router.get("")
async def list_query_groups(db: AsyncSession = Depends(get_db)):
    counts = dict(
        (await db.execute(select(Query.query_group_id, func.count(Query.id)).group_by(Query.query_group_id))).all()
    )
    groups = (await db.execute(select(QueryGroup).order_by(QueryGroup.id))).scalars().all()
    return [group_to_dict(g, counts.get(g.id, 0)) for g in groups]


@router.get("/{group_id}")
async def get_query_group(group_id: int, db: AsyncSession = Depends(get_db)):
    group = await _get_group_or_404(db, group_id)
    return group_to_dict(group, await _count_queries(db, group_id))


@router.post("", status_code=201)
async def create_query_group(body: QueryGroupBody, db: AsyncSession = Depends(get_db)):
    group = QueryGroup(**body.model_dump())
    db.add(group)
    await db.commit()
    logger.info(f"Created query group {group.id}: '{group.name}'")
    return group_to_dict(group)


@router.put("/{group_id}")
async def update_query_group(group_id: int, body: QueryGroupBody, db: AsyncSession = Depends(get_db)):
    group = await _get_group_or_404(db, group_id)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(group, key, value)
    await db.commit()
    return group_to_dict(group, await _count_queries(db, group_id))


@router.delete("/{group_id}")
async def delete_query_group(group_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a group; its queries stay, without a group."""
    await _get_group_or_404(db, group_id)
    await db.execute(update(Query).where(Query.query_group_id == group_id).values(query_group_id=None))
    await db.execute(delete(QueryGroup).where(QueryGroup.id == group_id))
    await db.commit()
    logger.info(f"Deleted query group {group_id}")
    return {"message": "Query group deleted"}
