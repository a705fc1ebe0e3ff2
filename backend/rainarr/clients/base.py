"""
Torrent client gateway interface and the records it exchanges.

Services never pass ORM rows to a client or client payloads to the store
directly; they go through these models and the mapping helpers in
services/torrent_service.py.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TorrentInfo(BaseModel):
    """One entry of qBittorrent's /torrents/info."""
    model_config = ConfigDict(extra="ignore")

    hash: str
    name: str = ""
    category: str = ""
    added_on: int = 0
    completion_on: int = 0
    last_activity: int = 0
    seen_complete: int = 0
    time_active: int = 0
    total_size: int = 0
    size: int = 0
    progress: float = 0.0
    availability: float = 0.0
    dlspeed: int = 0
    upspeed: int = 0
    eta: int = 0
    num_seeds: int = 0
    num_leechs: int = 0
    num_complete: int = 0
    num_incomplete: int = 0
    priority: int = 0
    f_l_piece_prio: bool = False
    force_start: bool = False
    seq_dl: bool = False
    save_path: str = ""
    state: str = ""
    tags: str = ""
    tracker: str = ""

    # Filled in by the torrent service, not by the client
    query_ids: List[int] = Field(default_factory=list)
    query_group_ids: List[Optional[int]] = Field(default_factory=list)


class TorrentFile(BaseModel):
    """One entry of qBittorrent's /torrents/files."""
    model_config = ConfigDict(extra="ignore")

    index: Optional[int] = None
    name: str
    size: int = 0
    progress: float = 0.0
    priority: int = 1
    is_seed: Optional[bool] = None
    piece_range: List[int] = Field(default_factory=lambda: [0, 0])
    availability: float = 0.0


class TorrentProperties(BaseModel):
    """Subset of qBittorrent's /torrents/properties."""
    model_config = ConfigDict(extra="ignore")

    piece_size: int = 0
    pieces_num: int = 0
    pieces_have: int = 0
    save_path: str = ""
    total_size: int = 0


class AddTorrentOptions(BaseModel):
    """Options for adding torrents by URL."""
    category: Optional[str] = None
    save_path: Optional[str] = None
    sequential_download: bool = False
    first_last_piece_prio: bool = True


class TorrentClient(ABC):
    """
    Abstract torrent client gateway.

    Read operations return None on failure (so callers can tell "client
    unreachable" apart from "nothing there") and log the cause. Mutations
    raise TorrentClientError.
    """

    @abstractmethod
    async def authenticate(self) -> bool:
        """Log in (or refresh the session)."""

    @abstractmethod
    async def add_torrents_by_url(self, urls: List[str], options: AddTorrentOptions) -> None:
        pass

    @abstractmethod
    async def get_torrent_infos(self, hashes: Optional[List[str]] = None) -> Optional[List[TorrentInfo]]:
        pass

    @abstractmethod
    async def get_torrent_contents(self, torrent_hash: str) -> Optional[List[TorrentFile]]:
        pass

    @abstractmethod
    async def get_piece_states(self, torrent_hash: str) -> Optional[List[int]]:
        pass

    @abstractmethod
    async def get_torrent_properties(self, torrent_hash: str) -> Optional[TorrentProperties]:
        pass

    @abstractmethod
    async def pause_torrents(self, hashes: List[str]) -> None:
        pass

    @abstractmethod
    async def resume_torrents(self, hashes: List[str]) -> None:
        pass

    @abstractmethod
    async def delete_torrents(self, hashes: List[str], delete_files: bool) -> None:
        pass

    async def close(self):
        """Release network resources."""
