"""
API clients for external services.
"""
from rainarr.clients.base import (
    AddTorrentOptions,
    TorrentClient,
    TorrentFile,
    TorrentInfo,
    TorrentProperties,
)
from rainarr.clients.qbittorrent import QBittorrentClient
from rainarr.clients.prowlarr import IndexerResult, ProwlarrClient

__all__ = [
    "AddTorrentOptions",
    "TorrentClient",
    "TorrentFile",
    "TorrentInfo",
    "TorrentProperties",
    "QBittorrentClient",
    "IndexerResult",
    "ProwlarrClient",
]
