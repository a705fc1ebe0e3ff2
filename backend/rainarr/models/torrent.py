"""
Mirror of live torrent-client state, and the files inside each torrent.
"""
import json
from array import array
from typing import Iterable, Optional, Tuple
from sqlalchemy import Column, Integer, BigInteger, String, Text, Float, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from rainarr.database import Base


# Piece states as reported by qBittorrent
PIECE_MISSING = 0
PIECE_DOWNLOADING = 1
PIECE_COMPLETE = 2


def encode_piece_states(states: Iterable[int]) -> str:
    """Encode piece states for the piece_states column."""
    return json.dumps([int(s) for s in states], separators=(",", ":"))


def decode_piece_states(blob: Optional[str]) -> array:
    """
    Decode the piece_states column into a fixed-width byte array.

    Empty or unreadable blobs decode to an empty array.
    """
    if not blob:
        return array("B")
    try:
        values = json.loads(blob)
    except (TypeError, ValueError):
        return array("B")
    if not isinstance(values, list):
        return array("B")
    return array("B", (v if v in (PIECE_MISSING, PIECE_DOWNLOADING, PIECE_COMPLETE) else PIECE_MISSING for v in values))


class Torrent(Base):
    """Live torrent-client state for one info-hash."""

    __tablename__ = "torrents"

    hash = Column(String(64), primary_key=True)
    name = Column(String(1000), nullable=True)
    category = Column(String(100), nullable=True, index=True)

    # Mirrored verbatim from qBittorrent (epochs in seconds, sizes in bytes)
    added_on = Column(BigInteger, nullable=True)
    completion_on = Column(BigInteger, nullable=True)
    last_activity = Column(BigInteger, nullable=True)
    seen_complete = Column(BigInteger, nullable=True)
    time_active = Column(BigInteger, nullable=True)
    total_size = Column(BigInteger, nullable=True)
    size = Column(BigInteger, nullable=True)
    progress = Column(Float, default=0.0)
    availability = Column(Float, nullable=True)
    dlspeed = Column(BigInteger, default=0)
    upspeed = Column(BigInteger, default=0)
    eta = Column(BigInteger, nullable=True)
    num_seeds = Column(Integer, nullable=True)
    num_leechs = Column(Integer, nullable=True)
    num_complete = Column(Integer, nullable=True)
    num_incomplete = Column(Integer, nullable=True)
    priority = Column(Integer, nullable=True)
    f_l_piece_prio = Column(Boolean, default=False)
    force_start = Column(Boolean, default=False)
    seq_dl = Column(Boolean, default=False)
    save_path = Column(String(1000), nullable=True)
    state = Column(String(50), nullable=True)
    tags = Column(String(500), nullable=True)
    tracker = Column(String(1000), nullable=True)

    # JSON list of 0/1/2, see decode_piece_states()
    piece_states = Column(Text, nullable=True)

    contents = relationship(
        "TorrentContent",
        back_populates="torrent",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TorrentContent.file_index",
    )

    @property
    def pieces(self) -> array:
        return decode_piece_states(self.piece_states)


class TorrentContent(Base):
    """One file inside a torrent."""

    __tablename__ = "torrent_contents"

    id = Column(String(100), primary_key=True)  # "<hash>_<file index>"
    torrent_hash = Column(String(64), ForeignKey("torrents.hash", ondelete="CASCADE"), nullable=False, index=True)
    file_index = Column(Integer, nullable=False)

    name = Column(String(2000), nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    progress = Column(Float, default=0.0)
    priority = Column(Integer, nullable=True)
    is_seed = Column(Boolean, default=False)

    # Inclusive piece indices covered by this file
    piece_range_start = Column(Integer, nullable=False, default=0)
    piece_range_end = Column(Integer, nullable=False, default=0)
    piece_size = Column(BigInteger, nullable=True)
    availability = Column(Float, nullable=True)

    hardlink_path = Column(String(2000), nullable=True)

    torrent = relationship("Torrent", back_populates="contents")

    @property
    def piece_range(self) -> Tuple[int, int]:
        return self.piece_range_start, self.piece_range_end

    @staticmethod
    def make_id(torrent_hash: str, file_index: int) -> str:
        return f"{torrent_hash}_{file_index}"
