"""
Torrent API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from rainarr.services.piece_resolver import available_fraction, available_ranges
from rainarr.utils.errors import log_and_raise_500

router = APIRouter(prefix="/api/torrents", tags=["torrents"])


class AddFromResultRequest(BaseModel):
    guid: str


class LinkRequest(BaseModel):
    destination_dir: Optional[str] = None


class StatusFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hashes: Optional[List[str]] = None
    query_id: Optional[int] = Field(None, alias="queryId")
    category: Optional[str] = None
    query_group_id: Optional[int] = Field(None, alias="queryGroupId")

    def as_kwargs(self) -> dict:
        return {
            "hashes": self.hashes,
            "query_id": self.query_id,
            "category": self.category,
            "query_group_id": self.query_group_id,
        }


def _split_hashes(hashes: Optional[str]) -> Optional[List[str]]:
    if not hashes:
        return None
    return [h.strip().lower() for h in hashes.replace("|", ",").split(",") if h.strip()]


@router.post("/add-from-result")
async def add_from_result(body: AddFromResultRequest, request: Request):
    """Send a stored search result to qBittorrent."""
    try:
        info = await request.app.state.torrent_service.add_torrent_from_result(body.guid)
    except Exception as e:
        log_and_raise_500(e, "add torrent")
    if info is None:
        return {"added": False, "message": "Torrent did not appear in the client in time"}
    return {"added": True, "torrent": info.model_dump()}


@router.get("/get-statuses")
async def get_statuses(
    request: Request,
    hashes: Optional[str] = Query(None, description="Comma separated info-hashes"),
    query_id: Optional[int] = Query(None, alias="queryId"),
    category: Optional[str] = None,
    query_group_id: Optional[int] = Query(None, alias="queryGroupId"),
):
    """Live status of known torrents, with the queries they belong to."""
    try:
        infos = await request.app.state.torrent_service.get_torrent_statuses(
            hashes=_split_hashes(hashes),
            query_id=query_id,
            category=category,
            query_group_id=query_group_id,
        )
        return [info.model_dump() for info in infos]
    except Exception as e:
        log_and_raise_500(e, "get torrent statuses")


@router.post("/update-statuses")
async def update_statuses(request: Request, body: StatusFilter = StatusFilter()):
    """Like get-statuses, also refreshing stored torrent rows and file lists."""
    try:
        infos = await request.app.state.torrent_service.update_torrent_statuses(**body.as_kwargs())
        return [info.model_dump() for info in infos]
    except Exception as e:
        log_and_raise_500(e, "update torrent statuses")


@router.get("/{torrent_hash}")
async def get_torrent(torrent_hash: str, request: Request):
    infos = await request.app.state.torrent_service.get_torrent_info([torrent_hash.lower()])
    if infos is None:
        raise HTTPException(status_code=502, detail="qBittorrent is unreachable")
    if not infos:
        raise HTTPException(status_code=404, detail="Torrent not found in client")
    return infos[0].model_dump()


@router.post("/{torrent_hash}/link")
async def link_torrent(torrent_hash: str, request: Request, body: LinkRequest = LinkRequest()):
    """Hardlink the torrent's finished media files into its group directory."""
    try:
        linked = await request.app.state.torrent_service.link_torrent_files(torrent_hash.lower(), body.destination_dir)
        return {
            "linked": [
                {"index": item.index, "source": item.source, "destination": item.destination, "created": item.created}
                for item in linked
            ]
        }
    except Exception as e:
        log_and_raise_500(e, "link torrent files")


@router.post("/{torrent_hash}/pause")
async def pause_torrent(torrent_hash: str, request: Request):
    try:
        await request.app.state.torrent_service.stop_torrent(torrent_hash.lower())
        return {"message": "Torrent paused"}
    except Exception as e:
        log_and_raise_500(e, "pause torrent")


@router.post("/{torrent_hash}/start")
async def start_torrent(torrent_hash: str, request: Request):
    try:
        await request.app.state.torrent_service.start_torrent(torrent_hash.lower())
        return {"message": "Torrent resumed"}
    except Exception as e:
        log_and_raise_500(e, "resume torrent")


@router.delete("/{torrent_hash}")
async def remove_torrent(torrent_hash: str, request: Request):
    """Remove from qBittorrent together with its files."""
    try:
        await request.app.state.torrent_service.remove_torrent(torrent_hash.lower())
        logger.info(f"Torrent {torrent_hash} removed via API")
        return {"message": "Torrent removed"}
    except Exception as e:
        log_and_raise_500(e, "remove torrent")


@router.get("/{torrent_hash}/contents")
async def get_contents(torrent_hash: str, request: Request):
    contents = await request.app.state.torrent_service.get_contents(torrent_hash.lower())
    return [
        {
            "id": c.id,
            "index": c.file_index,
            "name": c.name,
            "size": c.size,
            "progress": c.progress,
            "priority": c.priority,
            "is_seed": c.is_seed,
            "piece_range": list(c.piece_range),
            "piece_size": c.piece_size,
            "availability": c.availability,
            "hardlink_path": c.hardlink_path,
        }
        for c in contents
    ]


@router.get("/{torrent_hash}/contents/{file_index}/availability")
async def get_content_availability(torrent_hash: str, file_index: int, request: Request):
    """Which byte ranges of a file are on disk, piece by piece."""
    layout = await request.app.state.torrent_service.get_content_layout(torrent_hash.lower(), file_index)
    return {
        "index": layout.file_index,
        "name": layout.name,
        "size": layout.size,
        "piece_size": layout.piece_size,
        "available_fraction": available_fraction(layout.segments, layout.size),
        "available_ranges": [list(r) for r in available_ranges(layout.segments)],
        "segments": [s.to_dict() for s in layout.segments],
    }
