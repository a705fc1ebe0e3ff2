"""
Utility modules for Rainarr.
"""
from rainarr.utils.logger import setup_logger
from rainarr.utils.infohash import info_hash_from_magnet, info_hash_from_torrent, resolve_info_hash

__all__ = [
    "setup_logger",
    "info_hash_from_magnet",
    "info_hash_from_torrent",
    "resolve_info_hash",
]
