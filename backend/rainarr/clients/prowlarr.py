"""
Prowlarr API client for indexer searches.
"""
from typing import List, Optional
import aiohttp
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from rainarr.constants import HTTP_CLIENT_TIMEOUT_SECONDS


class IndexerResult(BaseModel):
    """One Prowlarr search hit, mapped onto search-result field names."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    guid: str
    title: str = ""
    link: Optional[str] = Field(None, alias="downloadUrl")
    magnet: Optional[str] = Field(None, alias="magnetUrl")
    info_hash: Optional[str] = Field(None, alias="infoHash")
    info: Optional[str] = Field(None, alias="infoUrl")
    seeders: int = 0
    leechers: int = 0
    size: Optional[int] = None
    age: Optional[str] = None
    indexer: Optional[str] = None

    @field_validator("info_hash")
    @classmethod
    def lowercase_hash(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else None

    @field_validator("seeders", "leechers", mode="before")
    @classmethod
    def missing_counts(cls, value):
        return value or 0

    @field_validator("age", mode="before")
    @classmethod
    def age_as_text(cls, value):
        return None if value is None else str(value)


class ProwlarrClient:
    """Client for the Prowlarr v1 API."""

    def __init__(self, url: str, api_key: str):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"X-Api-Key": self.api_key},
                timeout=aiohttp.ClientTimeout(total=HTTP_CLIENT_TIMEOUT_SECONDS)
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_indexer_ids_by_tag(self, tag: str) -> List[int]:
        """Indexer ids carrying ``tag`` (case-insensitive); empty if unknown or unreachable."""
        try:
            async with self.session.get(f"{self.url}/api/v1/tag/detail") as response:
                response.raise_for_status()
                tags = await response.json()
        except Exception as e:
            logger.error(f"Error fetching Prowlarr tags: {e}")
            return []

        for entry in tags:
            if str(entry.get("label", "")).lower() == tag.lower():
                return [int(i) for i in entry.get("indexerIds", [])]

        logger.warning(f"Prowlarr tag '{tag}' not found")
        return []

    async def search(self, query: str, indexer_ids: List[int]) -> List[IndexerResult]:
        """Search the given indexers; empty on failure."""
        params = [("query", query), ("type", "search")]
        params.extend(("indexerIds", str(i)) for i in indexer_ids)
        try:
            async with self.session.get(f"{self.url}/api/v1/search", params=params) as response:
                response.raise_for_status()
                payload = await response.json()
        except Exception as e:
            logger.error(f"Error searching Prowlarr for '{query}': {e}")
            return []

        results = []
        for item in payload or []:
            try:
                results.append(IndexerResult.model_validate(item))
            except ValueError as e:
                logger.debug(f"Skipping malformed search result: {e}")
        logger.info(f"Prowlarr returned {len(results)} result(s) for '{query}'")
        return results
