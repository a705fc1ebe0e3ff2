"""
Saved search intents and their shared group defaults.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Table
from sqlalchemy.orm import relationship
from rainarr.database import Base


# Many-to-many: a search result may satisfy several queries
query_results = Table(
    "query_results",
    Base.metadata,
    Column("query_id", Integer, ForeignKey("queries.id", ondelete="CASCADE"), primary_key=True),
    Column("guid", String, ForeignKey("search_results.guid", ondelete="CASCADE"), primary_key=True),
)


class QueryGroup(Base):
    """Defaults inherited by member queries when their own field is unset."""

    __tablename__ = "query_groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    source_url = Column(String(1000), nullable=True)
    scraper_url = Column(String(1000), nullable=True)

    # Indexer selection
    prowlarr_tag = Column(String(100), nullable=True)
    indexers = Column(String(500), nullable=True)  # comma separated indexer ids

    # Filters
    target_quality = Column(String(50), nullable=True)
    search_frequency = Column(Integer, nullable=True)
    includes_regex = Column(String(500), nullable=True)
    excludes_regex = Column(String(500), nullable=True)

    queries = relationship("Query", back_populates="query_group")


class Query(Base):
    """A persisted, recurring search intent."""

    __tablename__ = "queries"

    id = Column(Integer, primary_key=True, index=True)
    search_query = Column(String(500), nullable=False)

    prowlarr_tag = Column(String(100), nullable=True)
    target_quality = Column(String(50), nullable=True)
    search_frequency = Column(Integer, nullable=True)
    includes_regex = Column(String(500), nullable=True)
    excludes_regex = Column(String(500), nullable=True)

    # Loop state
    loop_running = Column(Boolean, default=False, nullable=False)
    download_complete = Column(Boolean, default=False, nullable=False)

    query_group_id = Column(Integer, ForeignKey("query_groups.id", ondelete="SET NULL"), nullable=True, index=True)
    query_group = relationship("QueryGroup", back_populates="queries", lazy="selectin")

    results = relationship("SearchResult", secondary=query_results, back_populates="queries")
