"""
Service layer for Rainarr business logic.
"""
from rainarr.services.settings_service import SettingsService
from rainarr.services.search_service import SearchService
from rainarr.services.torrent_service import TorrentService
from rainarr.services.linker import FileLinker, LinkedFile
from rainarr.services.reconciliation import QueryReconciler, QueryScheduler, QueryState
from rainarr.services.download_poller import DownloadStartPoller

__all__ = [
    "SettingsService",
    "SearchService",
    "TorrentService",
    "FileLinker",
    "LinkedFile",
    "QueryReconciler",
    "QueryScheduler",
    "QueryState",
    "DownloadStartPoller",
]
