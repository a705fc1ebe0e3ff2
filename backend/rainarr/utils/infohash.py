"""
Info-hash extraction from magnet links and .torrent files.
"""
import asyncio
import base64
import hashlib
import re
from typing import Optional
from urllib.parse import parse_qs, urljoin, urlparse

import aiohttp
import bencodepy
from loguru import logger

from rainarr.constants import HTTP_CLIENT_TIMEOUT_SECONDS

_BTIH = re.compile(r"urn:btih:([a-fA-F0-9]{40}|[a-zA-Z2-7]{32})")


def info_hash_from_torrent(torrent_data: bytes) -> Optional[str]:
    """SHA-1 of the bencoded info dictionary, lowercase hex."""
    try:
        metainfo = bencodepy.decode(torrent_data)
        if not isinstance(metainfo, dict) or b'info' not in metainfo:
            return None
        return hashlib.sha1(bencodepy.encode(metainfo[b'info'])).hexdigest()
    except Exception as e:
        logger.debug(f"Failed to parse torrent file: {e}")
        return None


def info_hash_from_magnet(magnet_url: str) -> Optional[str]:
    """Extract the btih info-hash from a magnet URL, lowercase hex."""
    if not magnet_url or not magnet_url.startswith("magnet:"):
        return None

    params = parse_qs(urlparse(magnet_url).query)
    for xt in params.get("xt", []):
        match = _BTIH.match(xt)
        if not match:
            continue
        value = match.group(1)
        if len(value) == 40:
            return value.lower()
        # 32-char base32
        try:
            return base64.b32decode(value.upper()).hex()
        except ValueError:
            return None
    return None


async def find_redirect_url(session: aiohttp.ClientSession, url: str) -> str:
    """
    Follow a single redirect hop without fetching the target.

    Indexer download links commonly redirect straight to a magnet URI.
    On any failure the original URL is returned.
    """
    if not url or url.startswith("magnet:"):
        return url
    try:
        async with session.get(url, allow_redirects=False) as response:
            location = response.headers.get("Location")
            if response.status in (301, 302, 303, 307, 308) and location:
                return urljoin(url, location)
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.warning(f"Could not resolve redirect for {url[:80]}: {e}")
    return url


async def resolve_info_hash(session: aiohttp.ClientSession, uri: str) -> Optional[str]:
    """
    Derive the info-hash of a magnet link or a .torrent download URL.

    Returns None when the link is empty, unreachable or not a torrent.
    """
    if not uri:
        return None
    if uri.startswith("magnet:"):
        return info_hash_from_magnet(uri)

    try:
        timeout = aiohttp.ClientTimeout(total=HTTP_CLIENT_TIMEOUT_SECONDS)
        async with session.get(uri, timeout=timeout) as response:
            response.raise_for_status()
            data = await response.read()
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.warning(f"Could not fetch torrent from {uri[:80]}: {e}")
        return None

    # Some indexers answer with the magnet link as the body
    if len(data) < 2000:
        text = data.decode("utf-8", errors="ignore").strip()
        if text.startswith("magnet:"):
            return info_hash_from_magnet(text)

    # Large multi-file torrents take a while to decode
    return await asyncio.to_thread(info_hash_from_torrent, data)
