"""In-process lexical response cache (Jaccard token overlap)."""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Optional

from ..models import CacheEntry, CacheTier


logger = logging.getLogger(__name__)


STOP_WORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can",
    "dengan", "dan", "yang", "untuk", "di", "ke", "dari",
})

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace, cap at 200 chars."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()[:200]


def tokenize(text: str) -> FrozenSet[str]:
    """Meaningful tokens: longer than two characters and not a stop word."""
    return frozenset(
        word for word in normalize_query(text).split(" ")
        if len(word) > 2 and word not in STOP_WORDS
    )


def jaccard_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


@dataclass
class _LexicalRecord:
    query: str
    tokens: FrozenSet[str]
    entry: CacheEntry
    timestamp: float
    hit_count: int = 0


class ResponseCache:
    """
    Bounded in-process cache matched by Jaccard similarity of query tokens.

    Entries expire after ``ttl_minutes``; when full, the oldest entry is
    evicted on insert.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl_minutes: float = 30,
        threshold: float = 0.7,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_minutes * 60
        self.threshold = threshold
        self._clock = clock
        self._records: Dict[str, _LexicalRecord] = {}
        self.hits = 0
        self.misses = 0

    def _expired(self, record: _LexicalRecord, now: float) -> bool:
        return now - record.timestamp > self.ttl_seconds

    def find_similar(self, query: str, threshold: Optional[float] = None) -> Optional[CacheEntry]:
        """
        Find the most similar non-expired cached query.

        Args:
            query: Request text
            threshold: Minimum similarity (defaults to the cache threshold)

        Returns:
            The cached entry tagged with the lexical tier, or None
        """
        threshold = self.threshold if threshold is None else threshold
        tokens = tokenize(query)
        now = self._clock()

        best: Optional[_LexicalRecord] = None
        best_score = 0.0
        for record in self._records.values():
            if self._expired(record, now):
                continue
            score = jaccard_similarity(tokens, record.tokens)
            if score >= threshold and score > best_score:
                best, best_score = record, score

        if best is None:
            self.misses += 1
            return None

        best.hit_count += 1
        self.hits += 1
        logger.info(f"Lexical cache hit (similarity: {best_score:.2f})")
        return best.entry.model_copy(update={"tier": CacheTier.lexical})

    def set(self, query: str, entry: CacheEntry) -> None:
        key = normalize_query(query)
        if key not in self._records and self._records and len(self._records) >= self.max_size:
            oldest = min(self._records, key=lambda k: self._records[k].timestamp)
            del self._records[oldest]

        self._records[key] = _LexicalRecord(
            query=query,
            tokens=tokenize(query),
            entry=entry,
            timestamp=self._clock(),
        )
        logger.debug(f"Cached response (size: {len(self._records)}/{self.max_size})")

    def cleanup(self) -> int:
        """Remove expired entries and return how many were removed."""
        now = self._clock()
        expired = [k for k, r in self._records.items() if self._expired(r, now)]
        for key in expired:
            del self._records[key]
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired lexical cache entries")
        return len(expired)

    def get_stats(self) -> Dict[str, float]:
        total = self.hits + self.misses
        return {
            "size": len(self._records),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }

    def clear(self) -> None:
        self._records.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._records)
