"""Multi-tier result cache: persistent -> lexical -> semantic."""

import logging
from typing import Any, Dict, Optional

from ..core.config import settings
from ..middleware.metrics import track_cache_lookup
from ..models import CacheEntry, CacheTier
from ..utils.background import BackgroundTaskTracker, background_tasks
from .lexical import ResponseCache
from .persistent import PersistentCacheStore, fingerprint
from .semantic import SemanticCache


logger = logging.getLogger(__name__)


class MultiTierCache:
    """
    Resolve a request against three tiers of increasing cost and recall.

    Tiers are checked in fixed order and the first hit wins. A failing tier
    is logged and counted as a miss.
    """

    def __init__(
        self,
        lexical: ResponseCache,
        persistent: Optional[PersistentCacheStore] = None,
        semantic: Optional[SemanticCache] = None,
        max_age_hours: float = settings.CACHE_PERSISTENT_MAX_AGE_HOURS,
        min_similarity: float = settings.CACHE_PERSISTENT_MIN_SIMILARITY,
        background: BackgroundTaskTracker = background_tasks,
    ):
        self.lexical = lexical
        self.persistent = persistent
        self.semantic = semantic
        self.max_age_hours = max_age_hours
        self.min_similarity = min_similarity
        self.background = background

    async def resolve(self, text: str) -> Optional[CacheEntry]:
        """
        Look up a prior result for the request text.

        Args:
            text: Request text

        Returns:
            CacheEntry tagged with the tier it came from, or None on a miss
        """
        key = fingerprint(text)

        if self.persistent is not None:
            try:
                entry = await self.persistent.find(key, text, self.max_age_hours, self.min_similarity)
            except Exception as e:
                logger.warning(f"Persistent cache lookup failed: {e}")
                track_cache_lookup(CacheTier.persistent.value, "error")
                entry = None
            if entry is not None:
                logger.info(f"Persistent cache hit for {key[:12]}")
                track_cache_lookup(CacheTier.persistent.value, "hit")
                return entry

        entry = self.lexical.find_similar(text)
        if entry is not None:
            track_cache_lookup(CacheTier.lexical.value, "hit")
            return entry

        if self.semantic is not None:
            try:
                entry = await self.semantic.find_similar(text)
            except Exception as e:
                logger.warning(f"Semantic cache lookup failed: {e}")
                track_cache_lookup(CacheTier.semantic.value, "error")
                entry = None
            if entry is not None:
                track_cache_lookup(CacheTier.semantic.value, "hit")
                return entry

        track_cache_lookup("all", "miss")
        return None

    async def store(self, text: str, entry: CacheEntry) -> None:
        """Write a completed result to every writable tier.

        The persistent write is awaited; the semantic embedding is computed in
        the background.
        """
        key = fingerprint(text)
        entry = entry.model_copy(update={"fingerprint": key})

        if self.persistent is not None:
            try:
                await self.persistent.write(key, text, entry)
            except Exception as e:
                logger.warning(f"Persistent cache write failed: {e}")

        self.lexical.set(text, entry.model_copy(update={"tier": CacheTier.lexical}))

        if self.semantic is not None:
            self.background.spawn(
                self.semantic.add(text, entry.model_copy(update={"tier": CacheTier.semantic})),
                name="semantic-cache-add",
            )

    async def cleanup(self) -> Dict[str, int]:
        """Purge expired entries from the tiers that expire."""
        removed = {"lexical": self.lexical.cleanup(), "persistent": 0}
        purge = getattr(self.persistent, "purge_expired", None)
        if purge is not None:
            removed["persistent"] = await purge(self.max_age_hours)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"lexical": self.lexical.get_stats()}
        if self.semantic is not None:
            stats["semantic"] = self.semantic.get_stats()
        return stats
