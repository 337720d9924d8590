"""In-process semantic response cache (embedding cosine similarity)."""

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

import httpx

from ..models import CacheEntry, CacheTier
from .lexical import tokenize


logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class HashingEmbedder:
    """Local bag-of-words embedding using feature hashing."""

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions

    async def embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in tokenize(text):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        return vector


class OpenAIEmbedder:
    """Embeddings from an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = client

    async def embed(self, text: str) -> List[float]:
        payload = {"model": self.model, "input": text}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            response = await self._client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(f"{self.base_url}/embeddings", json=payload, headers=headers)
        response.raise_for_status()
        return response.json()["data"][0]["embedding"]


def cosine_similarity(a: List[float], b: List[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


@dataclass
class _SemanticRecord:
    embedding: List[float]
    entry: CacheEntry
    timestamp: float


class SemanticCache:
    """
    Bounded in-process cache matched by embedding cosine similarity.

    Its threshold sits above the lexical one since embeddings judge more
    paraphrases as similar.
    """

    def __init__(
        self,
        embedder: Embedder,
        max_size: int = 50,
        threshold: float = 0.85,
        clock: Callable[[], float] = time.time,
    ):
        self.embedder = embedder
        self.max_size = max_size
        self.threshold = threshold
        self._clock = clock
        self._records: Dict[str, _SemanticRecord] = {}
        self.hits = 0
        self.misses = 0

    async def find_similar(self, query: str, threshold: Optional[float] = None) -> Optional[CacheEntry]:
        threshold = self.threshold if threshold is None else threshold
        if not self._records:
            self.misses += 1
            return None

        embedding = await self.embedder.embed(query)
        if not embedding:
            self.misses += 1
            return None

        best: Optional[_SemanticRecord] = None
        best_score = 0.0
        for record in self._records.values():
            score = cosine_similarity(embedding, record.embedding)
            if score >= threshold and score > best_score:
                best, best_score = record, score

        if best is None:
            self.misses += 1
            return None

        self.hits += 1
        logger.info(f"Semantic cache hit (similarity: {best_score:.2f})")
        return best.entry.model_copy(update={"tier": CacheTier.semantic})

    async def add(self, query: str, entry: CacheEntry) -> None:
        """Embed the query and store the entry, evicting the oldest when full."""
        embedding = await self.embedder.embed(query)
        if not embedding:
            return

        if query not in self._records and self._records and len(self._records) >= self.max_size:
            oldest = min(self._records, key=lambda k: self._records[k].timestamp)
            del self._records[oldest]

        self._records[query] = _SemanticRecord(embedding=embedding, entry=entry, timestamp=self._clock())
        logger.debug(f"Embedding cached ({len(self._records)}/{self.max_size})")

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

    def __len__(self) -> int:
        return len(self._records)
