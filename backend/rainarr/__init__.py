"""
Rainarr - automated search, download and delivery of media via qBittorrent and Prowlarr.
"""
__version__ = "0.1.0"
