"""
qBittorrent API client for adding, inspecting and controlling torrents.
"""
from typing import Any, Dict, List, Optional
import aiohttp
from loguru import logger

from rainarr.clients.base import (
    AddTorrentOptions,
    TorrentClient,
    TorrentFile,
    TorrentInfo,
    TorrentProperties,
)
from rainarr.constants import HTTP_CLIENT_TIMEOUT_SECONDS
from rainarr.utils.errors import TorrentClientError


class QBittorrentClient(TorrentClient):
    """Client for interacting with qBittorrent Web API."""

    def __init__(self, url: str, username: str, password: str):
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self._session: Optional[aiohttp.ClientSession] = None
        self._authenticated = False

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                timeout=aiohttp.ClientTimeout(total=HTTP_CLIENT_TIMEOUT_SECONDS)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def authenticate(self) -> bool:
        """Log in, replacing any existing session cookie."""
        self._authenticated = False
        try:
            await self._ensure_authenticated()
            return True
        except Exception as e:
            logger.error(f"qBittorrent authentication failed: {e}")
            return False

    async def _ensure_authenticated(self):
        """Ensure we have a valid authentication session."""
        if self._authenticated:
            return

        data = {"username": self.username, "password": self.password}
        async with self.session.post(f"{self.url}/api/v2/auth/login", data=data) as response:
            if response.status != 200:
                raise TorrentClientError(f"Authentication failed with status {response.status}")
            text = await response.text()
            if text.strip() != "Ok.":
                raise TorrentClientError("qBittorrent login rejected (credentials may be wrong)")
        self._authenticated = True
        logger.debug("Authenticated with qBittorrent")

    async def _request(self, method: str, endpoint: str, retry_on_auth_failure: bool = True, **kwargs):
        """Make HTTP request with automatic re-authentication on 403."""
        await self._ensure_authenticated()
        url = f"{self.url}{endpoint}"
        response = await self.session.request(method, url, **kwargs)

        if response.status == 403 and retry_on_auth_failure:
            await response.release()
            logger.info("qBittorrent returned 403, re-authenticating...")
            self._authenticated = False
            await self._ensure_authenticated()
            response = await self.session.request(method, url, **kwargs)

        return response

    async def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Any:
        response = await self._request("GET", endpoint, params=params)
        try:
            response.raise_for_status()
            return await response.json()
        finally:
            response.release()

    async def _post(self, endpoint: str, data: Dict[str, Any], fallback: Optional[str] = None):
        """POST a form; ``fallback`` is tried on 404 (endpoints renamed in qBittorrent 5)."""
        try:
            response = await self._request("POST", endpoint, data=data)
            try:
                if response.status == 404 and fallback:
                    logger.debug(f"{endpoint} not found, retrying as {fallback}")
                    return await self._post(fallback, data)
                response.raise_for_status()
                return await response.text()
            finally:
                response.release()
        except TorrentClientError:
            raise
        except Exception as e:
            raise TorrentClientError(f"qBittorrent {endpoint} failed: {e}") from e

    async def add_torrents_by_url(self, urls: List[str], options: AddTorrentOptions) -> None:
        """Add torrents from magnet links or .torrent URLs."""
        data = {
            "urls": "\n".join(urls),
            "sequentialDownload": str(options.sequential_download).lower(),
            "firstLastPiecePrio": str(options.first_last_piece_prio).lower(),
        }
        if options.category:
            data["category"] = options.category
        if options.save_path:
            data["savepath"] = options.save_path

        text = await self._post("/api/v2/torrents/add", data)
        if text and text.strip() == "Fails.":
            raise TorrentClientError("qBittorrent refused to add the torrent")
        logger.debug(f"Added {len(urls)} torrent(s) to qBittorrent (category={options.category})")

    async def get_torrent_infos(self, hashes: Optional[List[str]] = None) -> Optional[List[TorrentInfo]]:
        """Bulk torrent info; None when qBittorrent cannot be queried."""
        params = {}
        if hashes is not None:
            if not hashes:
                return []
            params["hashes"] = "|".join(hashes)
        try:
            payload = await self._get_json("/api/v2/torrents/info", params)
            return [TorrentInfo.model_validate(item) for item in payload]
        except Exception as e:
            logger.error(f"Failed to get qBittorrent torrent info: {e}")
            return None

    async def get_torrent_contents(self, torrent_hash: str) -> Optional[List[TorrentFile]]:
        try:
            payload = await self._get_json("/api/v2/torrents/files", {"hash": torrent_hash})
            files = [TorrentFile.model_validate(item) for item in payload]
            for position, item in enumerate(files):
                if item.index is None:
                    item.index = position
            return files
        except Exception as e:
            logger.error(f"Failed to get contents of {torrent_hash}: {e}")
            return None

    async def get_piece_states(self, torrent_hash: str) -> Optional[List[int]]:
        try:
            return list(await self._get_json("/api/v2/torrents/pieceStates", {"hash": torrent_hash}))
        except Exception as e:
            logger.error(f"Failed to get piece states of {torrent_hash}: {e}")
            return None

    async def get_torrent_properties(self, torrent_hash: str) -> Optional[TorrentProperties]:
        try:
            payload = await self._get_json("/api/v2/torrents/properties", {"hash": torrent_hash})
            return TorrentProperties.model_validate(payload)
        except Exception as e:
            logger.error(f"Failed to get properties of {torrent_hash}: {e}")
            return None

    async def pause_torrents(self, hashes: List[str]) -> None:
        await self._post("/api/v2/torrents/pause", {"hashes": "|".join(hashes)}, fallback="/api/v2/torrents/stop")
        logger.debug(f"Paused {len(hashes)} torrent(s)")

    async def resume_torrents(self, hashes: List[str]) -> None:
        await self._post("/api/v2/torrents/resume", {"hashes": "|".join(hashes)}, fallback="/api/v2/torrents/start")
        logger.debug(f"Resumed {len(hashes)} torrent(s)")

    async def delete_torrents(self, hashes: List[str], delete_files: bool) -> None:
        await self._post(
            "/api/v2/torrents/delete",
            {"hashes": "|".join(hashes), "deleteFiles": str(delete_files).lower()},
        )
        logger.debug(f"Deleted {len(hashes)} torrent(s) (files={delete_files})")
