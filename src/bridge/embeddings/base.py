"""Base classes for embedding providers.

An embedder turns text into a fixed-length vector. Bridge treats the
model as a black box: the vector store only checks the dimension.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class Embedder(ABC):
    """Abstract base class for embedding providers.

    Example:
        ```python
        embedder = FastEmbedEmbedder()
        vector = await embedder.embed("walking by the river, fully here")
        assert len(vector) == embedder.dimensions
        ```
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding vector for a single text.

        Args:
            text: Text to embed.

        Returns:
            Embedding vector as list of floats.

        Raises:
            EmbeddingError: If the model fails to produce a vector.
        """
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for multiple texts, in input order."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vector."""
        ...
