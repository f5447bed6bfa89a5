"""
Blocklist Manager: the provider's list of revoked CIDs, cached on disk.

The cache ({"cids": [...], "fetchedAt": <epoch seconds>}) is trusted for
ttl_seconds. After that the provider is asked again; if it cannot be
reached the stale cache is used, since an old blocklist is still better
than none.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dsoul.config.settings import DEFAULT_BLOCKLIST_TTL_SECONDS
from dsoul.core.storage.paths import blocklist_cache_path
from dsoul.skills.errors import NetworkError
from dsoul.skills.manifest import ManifestStore
from dsoul.skills.models import ManifestEntry
from dsoul.skills.provider import DsoulProviderClient

logger = logging.getLogger(__name__)


class BlocklistCache(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cids: List[str] = Field(default_factory=list)
    fetched_at: float = Field(default=0.0, alias="fetchedAt")


class BlocklistManager:
    """Time-cached deny-list of CIDs"""

    def __init__(
        self,
        provider: DsoulProviderClient,
        cache_path: Optional[Path] = None,
        ttl_seconds: int = DEFAULT_BLOCKLIST_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.cache_path = Path(cache_path) if cache_path is not None else blocklist_cache_path()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._memory: Optional[BlocklistCache] = None

    def _read_cache(self) -> Optional[BlocklistCache]:
        if self._memory is not None:
            return self._memory
        if not self.cache_path.exists():
            return None
        try:
            self._memory = BlocklistCache.model_validate_json(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(f"Ignoring unreadable blocklist cache {self.cache_path}: {e}")
            return None
        return self._memory

    def _write_cache(self, cache: BlocklistCache) -> None:
        self._memory = cache
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(
                json.dumps(cache.model_dump(by_alias=True), indent=2), encoding="utf-8"
            )
        except OSError as e:
            # The in-memory copy still serves this process
            logger.warning(f"Cannot write blocklist cache {self.cache_path}: {e}")

    def _is_fresh(self, cache: BlocklistCache) -> bool:
        return (self.clock() - cache.fetched_at) < self.ttl_seconds

    async def get_set(self, force_refresh: bool = False) -> FrozenSet[str]:
        """
        Current blocked CIDs

        Args:
            force_refresh: Skip the TTL and ask the provider

        Returns:
            Fresh list, else the last cached list, else an empty set
        """
        cached = self._read_cache()
        if cached is not None and not force_refresh and self._is_fresh(cached):
            return frozenset(cached.cids)

        try:
            cids = await self.provider.fetch_blocklist()
        except NetworkError as e:
            if cached is not None:
                logger.warning(f"Blocklist refresh failed, using cached list ({len(cached.cids)} CIDs): {e}")
                return frozenset(cached.cids)
            logger.warning(f"Blocklist unavailable and nothing cached; continuing without it: {e}")
            return frozenset()

        self._write_cache(BlocklistCache(cids=sorted(cids), fetched_at=self.clock()))
        logger.info(f"Blocklist refreshed: {len(cids)} CIDs")
        return frozenset(cids)

    async def is_blocked(self, cid: str) -> bool:
        return cid in await self.get_set()


def find_blocked(
    blocked: Iterable[str],
    directories: Iterable[Path],
    manifests: ManifestStore,
) -> Dict[Path, List[ManifestEntry]]:
    """Manifest entries whose CID is blocked, grouped by skills folder"""
    blocked_set: Set[str] = set(blocked)
    found: Dict[Path, List[ManifestEntry]] = {}
    for directory in directories:
        hits = [entry for entry in manifests.read(directory) if entry.cid in blocked_set]
        if hits:
            found[Path(directory)] = hits
    return found


def flatten(found: Dict[Path, List[ManifestEntry]]) -> List[Tuple[Path, ManifestEntry]]:
    return [(directory, entry) for directory, entries in found.items() for entry in entries]


__all__ = ["BlocklistCache", "BlocklistManager", "find_blocked", "flatten"]
