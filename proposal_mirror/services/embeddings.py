"""Local sentence embeddings and similarity ranking for proposal search."""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from proposal_mirror.config.settings import (
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL_NAME,
)
from proposal_mirror.services.errors import DimensionMismatchError
from proposal_mirror.utils.logger import logger


class EmbeddingError(RuntimeError):
    """
    Raised when the embedding model cannot be loaded or returns unusable vectors.
    """


@dataclass(frozen=True)
class RankedMatch:
    """A candidate key with its cosine similarity to the query."""
    key: Hashable
    similarity: float


def _load_sentence_transformer(model_name: str) -> Any:
    # Imported here so that importing this module does not pull in torch
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(model_name)


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def rank(
    query: Sequence[float],
    candidates: Iterable[Tuple[Hashable, Sequence[float]]],
    top_k: int = 5,
    threshold: float = 0.3,
) -> List[RankedMatch]:
    """
    Score every candidate against the query and return the best ``top_k``.

    Candidates below ``threshold`` are dropped. Equal scores keep their input
    order, so results are reproducible.
    """
    if top_k <= 0:
        return []
    scored = [RankedMatch(key=key, similarity=cosine_similarity(query, vector)) for key, vector in candidates]
    kept = [match for match in scored if match.similarity >= threshold]
    # list.sort is stable, including with reverse=True
    kept.sort(key=lambda match: match.similarity, reverse=True)
    return kept[:top_k]


def vector_to_blob(vector: Sequence[float]) -> bytes:
    """Serialize a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype="<f4").tobytes()


def blob_to_vector(blob: bytes) -> List[float]:
    return np.frombuffer(bytes(blob), dtype="<f4").astype(np.float64).tolist()


class EmbeddingService:
    """
    Sentence embedding service backed by a local sentence-transformers model.

    The model is loaded once, on ``start()`` or on first use, and kept until
    ``close()``. Outputs are mean-pooled sentence vectors (the pooling layer of
    all-MiniLM-L6-v2) L2-normalized here, so a dot product equals the cosine
    similarity.

    Usage:
        with EmbeddingService() as embeddings:
            vector = embeddings.embed("treasury grant for skaters")
    """

    similarity = staticmethod(cosine_similarity)
    rank = staticmethod(rank)

    def __init__(
        self,
        model_name: str = EMBEDDING_MODEL_NAME,
        dimension: int = EMBEDDING_DIMENSION,
        batch_size: int = EMBEDDING_BATCH_SIZE,
        model_loader: Optional[Callable[[str], Any]] = None,
    ):
        """
        Initialize the embedding service without loading the model.

        Args:
            model_name: sentence-transformers model identifier.
            dimension: Expected output dimensionality.
            batch_size: Number of texts encoded per model call.
            model_loader: Factory returning an object with an ``encode`` method;
                defaults to ``SentenceTransformer``.
        """
        self.model_name = model_name
        self.dimension = dimension
        self.batch_size = max(1, batch_size)
        self._model_loader = model_loader or _load_sentence_transformer
        self._model: Any = None
        self._lock = threading.Lock()

    @property
    def is_started(self) -> bool:
        return self._model is not None

    def start(self) -> None:
        """Load the model if it is not loaded yet."""
        with self._lock:
            if self._model is not None:
                return
            logger.info("EmbeddingService: loading model %s", self.model_name)
            start_time = time.perf_counter()
            try:
                self._model = self._model_loader(self.model_name)
            except Exception as e:
                logger.error("EmbeddingService: failed to load %s: %s", self.model_name, e, exc_info=True)
                raise EmbeddingError(f"Failed to load embedding model {self.model_name}") from e
            logger.info("EmbeddingService: model loaded in %.2fs", time.perf_counter() - start_time)

    def close(self) -> None:
        """Release the model."""
        with self._lock:
            if self._model is not None:
                logger.info("EmbeddingService: releasing model %s", self.model_name)
            self._model = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        if not isinstance(text, str) or not text:
            raise ValueError("embed expects a non-empty string")
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in fixed-size batches, preserving input order."""
        if any((not isinstance(t, str)) or (t == "") for t in texts):
            raise ValueError("embed_batch received one or more invalid text entries")
        vectors: List[List[float]] = []
        for offset in range(0, len(texts), self.batch_size):
            vectors.extend(self._encode(texts[offset:offset + self.batch_size]))
        return vectors

    def _encode(self, batch: List[str]) -> List[List[float]]:
        if not self.is_started:
            self.start()
        try:
            raw = self._model.encode(
                batch,
                batch_size=len(batch),
                convert_to_numpy=True,
                normalize_embeddings=False,
                show_progress_bar=False,
            )
        except Exception as e:
            logger.error("EmbeddingService: encode failed for %d texts: %s", len(batch), e, exc_info=True)
            raise EmbeddingError("Failed to embed texts") from e

        matrix = np.asarray(raw, dtype=np.float64)
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if matrix.shape != (len(batch), self.dimension):
            raise EmbeddingError(
                f"Model returned shape {matrix.shape}, expected ({len(batch)}, {self.dimension})"
            )
        return [l2_normalize(row).tolist() for row in matrix]
