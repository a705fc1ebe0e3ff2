"""
Search result model.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, DateTime
from sqlalchemy.orm import relationship
from rainarr.database import Base
from rainarr.models.query import query_results


# Lifecycle states
STATE_NEW = ""
STATE_ADDED = "added"
STATE_DELETED_FROM_CLIENT = "deleted from client"


class SearchResult(Base):
    """A candidate download discovered by the indexer."""

    __tablename__ = "search_results"

    guid = Column(String, primary_key=True)  # opaque token from the indexer
    title = Column(String(1000), nullable=True)
    link = Column(Text, nullable=True)
    magnet = Column(Text, nullable=True)
    info = Column(String(1000), nullable=True)

    seeders = Column(Integer, default=0)
    leechers = Column(Integer, default=0)
    size = Column(BigInteger, nullable=True)
    age = Column(String(50), nullable=True)
    indexer = Column(String(255), nullable=True)

    # Lifecycle
    downloading = Column(Boolean, default=False, nullable=False)
    state = Column(String(50), default=STATE_NEW, nullable=False, index=True)
    info_hash = Column(String(64), nullable=True, index=True)  # lowercase hex

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    queries = relationship("Query", secondary=query_results, back_populates="results")
    torrent = relationship(
        "Torrent",
        primaryjoin="foreign(SearchResult.info_hash) == Torrent.hash",
        viewonly=True,
        uselist=False,
    )
