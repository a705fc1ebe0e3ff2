"""
Hardlinking finished media files out of the torrent client's download tree.
"""
import asyncio
import os
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional
from loguru import logger

from rainarr.clients.base import TorrentFile
from rainarr.constants import MEDIA_FILE_PATTERN, MIN_LINK_FILE_PROGRESS, MIN_LINK_FILE_SIZE_BYTES
from rainarr.services.settings_service import SettingsService

_MEDIA_FILE_RE = re.compile(MEDIA_FILE_PATTERN, re.IGNORECASE)
_ILLEGAL_CHARS_RE = re.compile(r'[<>:"|?*\x00-\x1f]')


@dataclass(frozen=True)
class LinkedFile:
    index: int
    source: str
    destination: str
    created: bool


def sanitize_name(name: str) -> str:
    """Strip characters most filesystems reject."""
    return _ILLEGAL_CHARS_RE.sub("", name).strip()


def flatten_name(name: str) -> str:
    """Turn a path inside the torrent into a single file name."""
    return sanitize_name(name.replace("/", "_").replace("\\", "_"))


def is_linkable(item: TorrentFile) -> bool:
    return (
        bool(_MEDIA_FILE_RE.search(item.name))
        and item.size > MIN_LINK_FILE_SIZE_BYTES
        and item.progress > MIN_LINK_FILE_PROGRESS
    )


def join_under(base: str, *parts: str) -> str:
    # save paths reported by the client are absolute inside its own container
    return os.path.join(base, *(p.lstrip("/\\") for p in parts if p))


class FileLinker:
    """Creates hardlinks under ``destinationSavePath/<group>``."""

    def __init__(self, settings_service: SettingsService):
        self.settings_service = settings_service

    def source_path(self, save_path: str, name: str) -> str:
        base = self.settings_service.get("torrentClientBasePath", "")
        return join_under(base or "/", save_path, name)

    def destination_path(self, link_root: str, destination_dir: str, name: str) -> str:
        return join_under(link_root, sanitize_name(destination_dir), flatten_name(name))

    async def link_files(
        self,
        contents: Iterable[TorrentFile],
        save_path: str,
        destination_dir: str,
    ) -> List[LinkedFile]:
        """Link every finished media file; existing links are kept and reported."""
        link_root = self.settings_service.get("destinationSavePath", "")
        if not link_root:
            logger.warning(f"destinationSavePath is not set, not linking files into '{destination_dir}'")
            return []

        linked = []
        for position, item in enumerate(contents):
            if not is_linkable(item):
                continue
            index = item.index if item.index is not None else position
            source = self.source_path(save_path, item.name)
            destination = self.destination_path(link_root, destination_dir, item.name)
            result = await asyncio.to_thread(self._link, source, destination)
            if result is not None:
                linked.append(LinkedFile(index=index, source=source, destination=destination, created=result))
        logger.info(f"Linked {len(linked)} file(s) into '{destination_dir}'")
        return linked

    @staticmethod
    def _link(source: str, destination: str) -> Optional[bool]:
        """True when created, False when already present, None on failure."""
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            os.link(source, destination)
        except FileExistsError:
            logger.info(f"Link already exists: {destination}")
            return False
        except OSError as e:
            logger.error(f"Failed to link {source} -> {destination}: {e}")
            return None
        logger.debug(f"Hard link created: {destination} -> {source}")
        return True
