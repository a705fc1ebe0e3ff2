"""
Application constants with documented reasoning.

This file centralizes "magic numbers" used throughout the codebase,
providing clear documentation for why each value was chosen.
"""

# =============================================================================
# HTTP CLIENT TIMEOUTS
# =============================================================================

# General HTTP client timeout (qBittorrent, Prowlarr, tracker downloads)
# Indexer searches fan out to many trackers and can take a while
HTTP_CLIENT_TIMEOUT_SECONDS = 30

# Shutdown timeout for stopping background loops
SHUTDOWN_TIMEOUT_SECONDS = 15

# =============================================================================
# DATABASE
# =============================================================================

# SQLite busy timeout - wait for locks before failing
# Background loops and request handlers write to the same file
SQLITE_BUSY_TIMEOUT_MS = 5000

# =============================================================================
# RECONCILIATION LOOP
# =============================================================================

# Ticker interval; one queued query step runs per tick
EVENT_LOOP_INTERVAL_SECONDS = 30

# Torrents older than this that are not actively downloading trigger a new search
STALE_TORRENT_MINUTES = 30

# Torrents slower than this (KB/s) trigger a new search
MIN_DL_SPEED_KBPS = 40

# A competing torrent counts as "still downloading" above this speed (bytes/s)
COMPETING_TORRENT_MIN_SPEED_BPS = 10

# ...and above this progress fraction
COMPETING_TORRENT_MIN_PROGRESS = 0.1

# =============================================================================
# DOWNLOAD-START POLLER
# =============================================================================

# Sleep between download-start detection cycles
DOWNLOAD_POLL_INTERVAL_SECONDS = 5

# Waiting for a freshly added torrent to show up in the client:
# 30 attempts x 2s = ~60s ceiling
TORRENT_EXIST_POLL_INTERVAL_SECONDS = 2
TORRENT_EXIST_MAX_ATTEMPTS = 30

# Background task health check interval
TASK_MONITOR_CHECK_INTERVAL_SECONDS = 60

# =============================================================================
# FILE LINKING
# =============================================================================

# Extensions considered media when hardlinking
MEDIA_FILE_PATTERN = r"\.(mp4|mkv|avi|mpg|mpeg|mov|asf|mp3|hevc)$"

# Skip samples, nfo-sized stubs, etc.
MIN_LINK_FILE_SIZE_BYTES = 10_000

# Files must be (nearly) fully downloaded before being linked
MIN_LINK_FILE_PROGRESS = 0.99

# =============================================================================
# STREAMING
# =============================================================================

# Read size for the streaming endpoint
STREAM_CHUNK_SIZE_BYTES = 1024 * 1024

STREAM_CONTENT_TYPE = "video/mp4"
