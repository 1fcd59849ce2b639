"""Unit tests for the embedding service, similarity and ranking."""
import math
from unittest.mock import MagicMock

import numpy as np
import pytest

from ..services.embeddings import (
    EmbeddingError,
    EmbeddingService,
    blob_to_vector,
    cosine_similarity,
    rank,
    vector_to_blob,
)
from ..services.errors import DimensionMismatchError, ValidationError


class TestCosineSimilarity:
    """Test cosine similarity values."""

    def test_identical_vectors(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0, abs=1e-5)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0, 0], [0, 1, 0]) == pytest.approx(0.0, abs=1e-5)

    def test_opposite_vectors(self):
        assert cosine_similarity([1, 2, 3], [-1, -2, -3]) == pytest.approx(-1.0, abs=1e-5)

    def test_dimension_mismatch(self):
        """Test that vectors of different lengths are rejected."""
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1, 2, 3], [1, 2])

    def test_dimension_mismatch_is_validation_error(self):
        with pytest.raises(ValidationError):
            cosine_similarity([1], [1, 2])

    def test_zero_vector(self):
        """Test that a zero vector scores exactly 0."""
        assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0


class TestRank:
    """Test top-k ranking with a threshold."""

    QUERY = [1, 0, 0]
    CANDIDATES = [
        ("a", [1, 0, 0]),
        ("b", [0.9, 0.1, 0]),
        ("c", [0, 1, 0]),
        ("d", [-1, 0, 0]),
    ]

    def test_top_k(self):
        matches = rank(self.QUERY, self.CANDIDATES, top_k=2, threshold=0)
        assert [m.key for m in matches] == ["a", "b"]

    def test_threshold(self):
        matches = rank(self.QUERY, self.CANDIDATES, top_k=10, threshold=0.5)
        assert {m.key for m in matches} == {"a", "b"}

    def test_scores_descending(self):
        matches = rank(self.QUERY, self.CANDIDATES, top_k=10, threshold=-1)
        scores = [m.similarity for m in matches]
        assert scores == sorted(scores, reverse=True)
        assert matches[-1].key == "d"

    def test_ties_keep_input_order(self):
        """Test equal scores are returned in candidate order."""
        candidates = [("first", [2, 0]), ("second", [1, 0]), ("third", [3, 0])]
        matches = rank([1, 0], candidates, top_k=3, threshold=0)
        assert [m.key for m in matches] == ["first", "second", "third"]

    def test_zero_top_k(self):
        assert rank(self.QUERY, self.CANDIDATES, top_k=0) == []


class TestVectorBlobs:

    def test_float32_little_endian(self):
        blob = vector_to_blob([1.0, -0.5])
        assert blob == np.array([1.0, -0.5], dtype="<f4").tobytes()
        assert blob_to_vector(blob) == [1.0, -0.5]

    def test_memoryview_blob(self):
        """Test that buffers returned by some drivers decode too."""
        assert blob_to_vector(memoryview(vector_to_blob([0.25]))) == [0.25]


class TestEmbeddingService:
    """Test the model lifecycle and output contract."""

    def test_lazy_start(self, fake_model):
        """Test the model is loaded on first use, once."""
        loader = MagicMock(return_value=fake_model)
        service = EmbeddingService(model_loader=loader)

        assert not service.is_started
        service.embed("skate park")
        service.embed("olympics")

        assert service.is_started
        loader.assert_called_once_with(service.model_name)

    def test_output_is_normalized(self, embeddings):
        vector = embeddings.embed("sponsor the skater for the olympics")
        assert len(vector) == 384
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0, abs=1e-6)

    def test_embed_is_deterministic(self, embeddings):
        assert embeddings.embed("treasury grant") == embeddings.embed("treasury grant")

    def test_batches_of_eight(self, embeddings, fake_model):
        """Test that texts are encoded in fixed-size batches, order preserved."""
        texts = [f"proposal text {i}" for i in range(19)]
        vectors = embeddings.embed_batch(texts)

        assert len(vectors) == 19
        assert [len(call) for call in fake_model.calls] == [8, 8, 3]
        assert vectors[5] == embeddings.embed("proposal text 5")

    def test_empty_text_rejected(self, embeddings):
        with pytest.raises(ValueError):
            embeddings.embed("")

    def test_wrong_dimension(self):
        """Test a model with the wrong output size is rejected."""
        model = MagicMock()
        model.encode.return_value = np.ones((1, 10))
        service = EmbeddingService(model_loader=lambda name: model)

        with pytest.raises(EmbeddingError):
            service.embed("text")

    def test_load_failure(self):
        service = EmbeddingService(model_loader=MagicMock(side_effect=OSError("no network")))
        with pytest.raises(EmbeddingError):
            service.start()
        assert not service.is_started

    def test_context_manager_closes(self, fake_model):
        with EmbeddingService(model_loader=lambda name: fake_model) as service:
            assert service.is_started
        assert not service.is_started

    def test_similarity_and_rank_on_service(self, embeddings):
        a = embeddings.embed("skate park funding")
        b = embeddings.embed("skate park funding")
        assert embeddings.similarity(a, b) == pytest.approx(1.0)
        assert embeddings.rank(a, [("x", b)], top_k=1, threshold=0.5)[0].key == "x"
