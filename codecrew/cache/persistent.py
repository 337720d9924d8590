"""Persistent (cross-restart) cache stores."""

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from typing import Any, Optional, Protocol

import redis.asyncio as redis
from sqlalchemy import delete, select

from ..core.config import settings
from ..db.models import CachedResult
from ..models import CacheEntry, CacheTier
from .lexical import normalize_query


logger = logging.getLogger(__name__)


def fingerprint(text: str) -> str:
    """Cache key for a request: sha256 of its normalized text."""
    return hashlib.sha256(normalize_query(text).encode("utf-8")).hexdigest()


def text_similarity(a: str, b: str) -> float:
    """Character-level similarity ratio of two normalized texts."""
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a, b).ratio()


class PersistentCacheStore(Protocol):
    async def find(
        self, fingerprint: str, text: str, max_age_hours: float, min_similarity: float
    ) -> Optional[CacheEntry]:
        ...

    async def write(self, fingerprint: str, text: str, entry: CacheEntry) -> None:
        ...


class SqlCacheStore:
    """Persistent cache tier backed by the ``cached_results`` table."""

    def __init__(self, session_factory=None, scan_limit: int = 100):
        if session_factory is None:
            from ..db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.scan_limit = scan_limit

    async def find(
        self, fingerprint: str, text: str, max_age_hours: float, min_similarity: float
    ) -> Optional[CacheEntry]:
        """
        Find a cached result within the time horizon.

        An exact fingerprint match wins; otherwise the most recent rows are
        compared by text similarity.

        Args:
            fingerprint: Fingerprint of the request
            text: Request text
            max_age_hours: Rolling time horizon
            min_similarity: Minimum similarity ratio (0-1)

        Returns:
            CacheEntry or None
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        normalized = normalize_query(text)

        async with self.session_factory() as session:
            result = await session.execute(
                select(CachedResult)
                .where(CachedResult.fingerprint == fingerprint, CachedResult.created_at >= cutoff)
                .order_by(CachedResult.created_at.desc())
                .limit(1)
            )
            row = result.scalars().first()

            if row is None:
                result = await session.execute(
                    select(CachedResult)
                    .where(CachedResult.created_at >= cutoff)
                    .order_by(CachedResult.created_at.desc())
                    .limit(self.scan_limit)
                )
                best_score = 0.0
                for candidate in result.scalars().all():
                    score = text_similarity(normalized, candidate.normalized_text)
                    if score >= min_similarity and score > best_score:
                        row, best_score = candidate, score

        if row is None:
            return None

        return CacheEntry(
            fingerprint=row.fingerprint,
            files=dict(row.files or {}),
            summary=row.summary,
            project_name=row.project_name,
            tier=CacheTier.persistent,
            created_at=row.created_at,
        )

    async def write(self, fingerprint: str, text: str, entry: CacheEntry) -> None:
        async with self.session_factory() as session:
            session.add(CachedResult(
                fingerprint=fingerprint,
                request_text=text,
                normalized_text=normalize_query(text),
                project_name=entry.project_name,
                summary=entry.summary,
                files=entry.files,
            ))
            await session.commit()

    async def purge_expired(self, max_age_hours: float) -> int:
        """Delete rows older than the horizon and return how many were deleted."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        async with self.session_factory() as session:
            result = await session.execute(delete(CachedResult).where(CachedResult.created_at < cutoff))
            await session.commit()
            return result.rowcount or 0


class RedisCacheStore:
    """Persistent cache tier backed by Redis.

    Payloads live under ``cache:result:<fingerprint>`` with a TTL equal to the
    horizon; a sorted set of fingerprints scored by write time supports the
    similarity scan.
    """

    RECENT_KEY = "cache:recent"

    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None, scan_limit: int = 100):
        self.url = url or settings.REDIS_URL
        self.redis: Optional[Any] = client
        self.scan_limit = scan_limit

    @staticmethod
    def _key(fingerprint: str) -> str:
        return f"cache:result:{fingerprint}"

    async def connect(self):
        """Connect to Redis."""
        if self.redis is not None:
            return
        if not self.url:
            raise RuntimeError("REDIS_URL is not set")
        self.redis = redis.from_url(self.url, decode_responses=True, encoding="utf-8")
        await self.redis.ping()
        logger.info(f"Connected to Redis at {self.url}")

    async def disconnect(self):
        """Disconnect from Redis."""
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            logger.info("Disconnected from Redis")

    async def find(
        self, fingerprint: str, text: str, max_age_hours: float, min_similarity: float
    ) -> Optional[CacheEntry]:
        await self.connect()
        value = await self.redis.get(self._key(fingerprint))
        if value:
            return self._decode(value)

        cutoff = time.time() - max_age_hours * 3600
        recent = await self.redis.zrevrangebyscore(
            self.RECENT_KEY, "+inf", cutoff, start=0, num=self.scan_limit
        )
        if not recent:
            return None

        normalized = normalize_query(text)
        values = await self.redis.mget([self._key(fp) for fp in recent])
        best: Optional[dict] = None
        best_score = 0.0
        for raw in values:
            if not raw:
                continue
            payload = json.loads(raw)
            score = text_similarity(normalized, payload.get("normalized_text", ""))
            if score >= min_similarity and score > best_score:
                best, best_score = payload, score

        return self._entry_from_payload(best) if best else None

    async def write(self, fingerprint: str, text: str, entry: CacheEntry) -> None:
        await self.connect()
        payload = {
            "entry": entry.model_dump(mode="json"),
            "normalized_text": normalize_query(text),
        }
        ttl = int(settings.CACHE_PERSISTENT_MAX_AGE_HOURS * 3600)
        await self.redis.set(self._key(fingerprint), json.dumps(payload), ex=ttl)
        await self.redis.zadd(self.RECENT_KEY, {fingerprint: time.time()})

    async def purge_expired(self, max_age_hours: float) -> int:
        await self.connect()
        cutoff = time.time() - max_age_hours * 3600
        return await self.redis.zremrangebyscore(self.RECENT_KEY, "-inf", cutoff)

    def _decode(self, raw: str) -> CacheEntry:
        return self._entry_from_payload(json.loads(raw))

    @staticmethod
    def _entry_from_payload(payload: dict) -> CacheEntry:
        entry = CacheEntry.model_validate(payload["entry"])
        return entry.model_copy(update={"tier": CacheTier.persistent})
