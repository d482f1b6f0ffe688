"""LRU cache in front of an embedder.

Recall embeds the same semantic query text repeatedly; this wrapper keeps
the most recent vectors keyed by a hash of the text.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict

from .base import Embedder

logger = logging.getLogger(__name__)


def _text_key(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class CachedEmbedder(Embedder):
    """Wrap any Embedder with a bounded LRU cache.

    Cached vectors are stored as tuples and handed out as fresh lists, so
    callers cannot corrupt the cache by mutating a result.

    Example:
        ```python
        embedder = CachedEmbedder(FastEmbedEmbedder(), cache_size=500)
        first = await embedder.embed("morning light")
        again = await embedder.embed("morning light")  # served from cache
        ```
    """

    def __init__(self, embedder: Embedder, cache_size: int = 1000) -> None:
        self._embedder = embedder
        self._cache_size = cache_size
        self._cache: OrderedDict[str, tuple[float, ...]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def _lookup(self, key: str) -> list[float] | None:
        vector = self._cache.get(key)
        if vector is None:
            return None
        self._cache.move_to_end(key)
        self.hits += 1
        return list(vector)

    def _store(self, key: str, vector: list[float]) -> None:
        if self._cache_size <= 0:
            return
        self._cache[key] = tuple(vector)
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    async def embed(self, text: str) -> list[float]:
        key = _text_key(text)
        cached = self._lookup(key)
        if cached is not None:
            return cached
        self.misses += 1
        vector = await self._embedder.embed(text)
        self._store(key, vector)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, sending only cache misses to the wrapped embedder."""
        results: dict[int, list[float]] = {}
        missing: list[tuple[int, str]] = []
        for index, text in enumerate(texts):
            cached = self._lookup(_text_key(text))
            if cached is None:
                missing.append((index, text))
            else:
                results[index] = cached

        if missing:
            self.misses += len(missing)
            vectors = await self._embedder.embed_batch([text for _, text in missing])
            for (index, text), vector in zip(missing, vectors, strict=True):
                self._store(_text_key(text), vector)
                results[index] = vector
            logger.debug("Embedded %d of %d texts (rest cached)", len(missing), len(texts))

        return [results[i] for i in range(len(texts))]

    @property
    def dimensions(self) -> int:
        return self._embedder.dimensions

    @property
    def size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        self.hits = 0
        self.misses = 0
