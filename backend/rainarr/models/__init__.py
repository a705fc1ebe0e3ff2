"""
Database models for Rainarr.
"""
from rainarr.models.query import Query, QueryGroup, query_results
from rainarr.models.result import SearchResult
from rainarr.models.torrent import Torrent, TorrentContent
from rainarr.models.setting import GlobalSetting

__all__ = [
    "Query",
    "QueryGroup",
    "query_results",
    "SearchResult",
    "Torrent",
    "TorrentContent",
    "GlobalSetting",
]
