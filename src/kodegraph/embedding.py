"""
Embedding of entity descriptions.

Two composable stages: DescriptionGenerator produces text, an Embedder
turns text into fixed-length vectors. The default Embedder wraps a
fastembed TextEmbedding model, loaded lazily on first use.

Embedding failures are fatal to an indexing run: enrich() raises
EmbeddingError instead of leaving entities without vectors.
"""

import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, Protocol, runtime_checkable

import structlog

from .description import DescriptionGenerator
from .entities import TypeEntity

log = structlog.get_logger()

DEFAULT_MODEL_NAME = "BAAI/bge-small-en-v1.5"
DEFAULT_BATCH_SIZE = 64


class EmbeddingError(Exception):
    """Raised when vectors cannot be produced for a batch of texts."""

    pass


@runtime_checkable
class Embedder(Protocol):
    """Text to fixed-length vector function."""

    def embed(self, text: str) -> list[float]:
        """Embed one text (used for ad-hoc query vectors)."""
        ...

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts, preserving order."""
        ...


class FastEmbedEmbedder:
    """Embedder backed by a fastembed TextEmbedding model."""

    def __init__(self, model_name: str = DEFAULT_MODEL_NAME, batch_size: int = DEFAULT_BATCH_SIZE):
        self.model_name = model_name
        self.batch_size = batch_size
        self._model: Any = None
        self._lock = threading.Lock()

    def _ensure_model(self) -> Any:
        with self._lock:
            if self._model is not None:
                return self._model
            try:
                from fastembed import TextEmbedding

                start = time.monotonic()
                self._model = TextEmbedding(model_name=self.model_name)
                log.info(
                    "embedding.model_loaded",
                    model=self.model_name,
                    elapsed_s=round(time.monotonic() - start, 2),
                )
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load embedding model '{self.model_name}': {e}"
                ) from e
            return self._model

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        model = self._ensure_model()
        try:
            vectors = [
                [float(x) for x in vec]
                for vec in model.embed(list(texts), batch_size=self.batch_size)
            ]
        except Exception as e:
            raise EmbeddingError(f"Embedding {len(texts)} texts failed: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding model returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors


class EnrichmentPipeline:
    """Describe, then embed, every type and method of a parsed batch."""

    def __init__(
        self,
        embedder: Embedder,
        generator: DescriptionGenerator | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.embedder = embedder
        self.generator = generator or DescriptionGenerator()
        self.batch_size = batch_size

    def enrich(
        self,
        types: list[TypeEntity],
        checkpoint: Callable[[str], None] | None = None,
    ) -> int:
        """Attach descriptions and embeddings to types and methods in place.

        Args:
            types: Parsed type entities
            checkpoint: Called between batches; may raise to abort the run

        Returns:
            Number of embeddings generated

        Raises:
            EmbeddingError: If any batch fails or returns malformed vectors
        """
        self.generator.describe_all(types)

        targets: list[Any] = []
        for type_entity in types:
            targets.append(type_entity)
            targets.extend(type_entity.methods)

        dimension: int | None = None
        for start in range(0, len(targets), self.batch_size):
            if checkpoint is not None:
                checkpoint("embedding")
            batch = targets[start : start + self.batch_size]
            try:
                vectors = self.embedder.embed_batch([t.description for t in batch])
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(f"Embedding batch failed: {e}") from e

            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"Embedder returned {len(vectors)} vectors for {len(batch)} descriptions"
                )
            for target, vector in zip(batch, vectors):
                if not vector:
                    raise EmbeddingError(f"Empty embedding for '{target.name}'")
                if dimension is None:
                    dimension = len(vector)
                elif len(vector) != dimension:
                    raise EmbeddingError(
                        f"Embedding dimension changed from {dimension} to {len(vector)}"
                    )
                target.embedding = list(vector)

        log.info("embedding.enriched", embeddings=len(targets), dimension=dimension)
        return len(targets)
