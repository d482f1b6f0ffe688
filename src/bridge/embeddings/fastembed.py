"""FastEmbed local embedding provider.

Runs sentence-transformer models locally through FastEmbed (ONNX), so
capturing and recalling experiences needs no API key.
"""

from __future__ import annotations

import asyncio
import logging

from fastembed import TextEmbedding

from bridge.exceptions import EmbeddingError

from .base import Embedder

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Model dimensions for known models
MODEL_DIMENSIONS = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "BAAI/bge-small-en-v1.5": 384,
    "BAAI/bge-base-en-v1.5": 768,
}


class FastEmbedEmbedder(Embedder):
    """FastEmbed local embedding provider.

    The model is downloaded and loaded lazily on first use. FastEmbed is
    synchronous, so inference runs in the default executor.
    """

    def __init__(self, model: str = DEFAULT_MODEL) -> None:
        self._model_name = model
        self._model: TextEmbedding | None = None
        self._dimensions = MODEL_DIMENSIONS.get(model, 384)

    def _get_model(self) -> TextEmbedding:
        if self._model is None:
            logger.info("Loading embedding model %s", self._model_name)
            self._model = TextEmbedding(self._model_name)
        return self._model

    def _run(self, texts: list[str]) -> list[list[float]]:
        try:
            model = self._get_model()
            return [vector.tolist() for vector in model.embed(texts)]
        except Exception as e:
            raise EmbeddingError(f"FastEmbed failed on {len(texts)} text(s): {e}") from e

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Raises:
            EmbeddingError: If the model cannot be loaded or inference fails.
        """
        loop = asyncio.get_running_loop()
        vectors = await loop.run_in_executor(None, self._run, [text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run, list(texts))

    @property
    def dimensions(self) -> int:
        return self._dimensions
