"""
Runtime-editable global settings.

Loaded once at startup into an in-memory cache; every write goes to the
database and the cache together.
"""
import asyncio
from typing import Callable, Dict, Optional
from loguru import logger
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rainarr.models import GlobalSetting

ALLOWED_KEYS = (
    "torrentClientBasePath",
    "torrentClientSavePath",
    "destinationSavePath",
    "previewSavePath",
    "defaultTorrentCategory",
    "defaultRenameTemplate",
    "eventLoopInterval",
    "minDlSpeed",
    "sequentialDownload",
)

# Written by the scheduler only; never accepted from the API
EVENT_LOOP_RUNNING_KEY = "globalEventLoopRunning"


class SettingsService:
    """Cache of GlobalSetting rows."""

    def __init__(self, get_db_session: Callable[[], AsyncSession]):
        self._get_db_session = get_db_session
        self._settings: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def is_allowed(key: str) -> bool:
        return key in ALLOWED_KEYS

    async def initialize(self):
        """Load all settings from the database."""
        async with self._get_db_session() as db:
            rows = (await db.execute(select(GlobalSetting))).scalars().all()
        self._settings = {row.key: row.value for row in rows if row.value is not None}
        logger.info(f"Loaded {len(self._settings)} global setting(s)")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._settings.get(key)
        return default if value in (None, "") else value

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(float(value))
        except ValueError:
            logger.warning(f"Setting {key}={value!r} is not a number, using {default}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.strip().lower() in ("true", "1", "yes")

    def get_all(self) -> Dict[str, str]:
        return {k: v for k, v in self._settings.items() if k in ALLOWED_KEYS}

    async def set(self, key: str, value: Optional[str]):
        """Persist a user-facing setting. Raises ValueError for unknown keys."""
        if not self.is_allowed(key):
            raise ValueError(f"Invalid key: {key}")
        await self._write(key, value)

    async def set_internal(self, key: str, value: str):
        """Persist a reserved key (e.g. the event loop flag)."""
        await self._write(key, value)

    async def _write(self, key: str, value: Optional[str]):
        value = None if value is None else str(value)
        async with self._lock:
            async with self._get_db_session() as db:
                stmt = insert(GlobalSetting).values(key=key, value=value)
                stmt = stmt.on_conflict_do_update(index_elements=[GlobalSetting.key], set_={"value": value})
                await db.execute(stmt)
                await db.commit()
            if value is None:
                self._settings.pop(key, None)
            else:
                self._settings[key] = value
        logger.debug(f"Setting {key} updated")
