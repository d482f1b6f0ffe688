"""Embedding providers for Bridge.

Example:
    ```python
    from bridge.config import Settings
    from bridge.embeddings import get_embedder

    embedder = get_embedder(Settings())
    vector = await embedder.embed("a quiet, open morning")
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from bridge.exceptions import ConfigurationError

from .base import Embedder
from .cached import CachedEmbedder
from .fastembed import FastEmbedEmbedder

if TYPE_CHECKING:
    from bridge.config import Settings


def get_embedder(settings: Settings | None = None) -> Embedder:
    """Create an embedder based on settings.

    Args:
        settings: Optional settings. Uses default Settings() if None.

    Returns:
        Configured Embedder, wrapped with an LRU cache when enabled.

    Raises:
        ConfigurationError: If the provider is unknown or its dimension does
            not match the configured vector dimension.
    """
    if settings is None:
        from bridge.config import Settings

        settings = Settings()

    if settings.embedding_provider != "fastembed":
        raise ConfigurationError(f"Unknown embedding provider: {settings.embedding_provider}")

    embedder: Embedder = FastEmbedEmbedder(model=settings.embedding_model)
    if embedder.dimensions != settings.vector_dimension:
        raise ConfigurationError(
            f"Embedding model {settings.embedding_model} produces {embedder.dimensions} "
            f"dimensions, but vector_dimension is {settings.vector_dimension}"
        )

    if settings.embedding_cache_enabled and settings.embedding_cache_size > 0:
        return CachedEmbedder(embedder=embedder, cache_size=settings.embedding_cache_size)
    return embedder


__all__ = [
    "CachedEmbedder",
    "Embedder",
    "FastEmbedEmbedder",
    "get_embedder",
]
