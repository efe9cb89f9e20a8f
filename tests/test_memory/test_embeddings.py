"""Tests for the embedding service."""

import asyncio
import math

import pytest

from conftest import TEST_DIMENSIONS, KeywordEmbeddingProvider, make_settings
from ledger_agent.memory.embeddings import (
    EmbeddingService,
    SentenceTransformerEmbeddingProvider,
    cosine_similarities,
    cosine_similarity,
    create_embedding_provider,
)
from ledger_agent.orchestration.errors import EmbeddingError


class TestCosineSimilarity:
    """Tests for cosine similarity helpers."""

    def test_identical_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(ValueError, match="Dimension mismatch"):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_batch_matches_pairwise(self) -> None:
        query = [1.0, 1.0, 0.0]
        candidates = [[1.0, 1.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0]]

        scores = cosine_similarities(query, candidates)

        assert scores == pytest.approx([cosine_similarity(query, c) for c in candidates])
        assert scores[3] == pytest.approx(1 / math.sqrt(2))

    def test_batch_empty(self) -> None:
        assert cosine_similarities([1.0], []) == []


class TestEmbeddingService:
    """Tests for EmbeddingService."""

    async def test_embed_returns_configured_dimensions(
        self, embedding_service: EmbeddingService
    ) -> None:
        vector = await embedding_service.embed("Invoice INV-001 is overdue")

        assert len(vector) == TEST_DIMENSIONS
        assert embedding_service.dimensions == TEST_DIMENSIONS

    async def test_identical_text_identical_vector(self, embedding_service: EmbeddingService) -> None:
        a = await embedding_service.embed("Acme pays net 45")
        b = await embedding_service.embed("Acme pays net 45")

        assert a == b

    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_text_rejected(self, embedding_service: EmbeddingService, text: str) -> None:
        with pytest.raises(EmbeddingError, match="empty"):
            await embedding_service.embed(text)

    async def test_provider_failure_wrapped(
        self, embedding_service: EmbeddingService, embedding_provider: KeywordEmbeddingProvider
    ) -> None:
        embedding_provider.fail_with = ConnectionError("network down")

        with pytest.raises(EmbeddingError, match="network down"):
            await embedding_service.embed("hello")

    async def test_embedding_error_passes_through(
        self, embedding_service: EmbeddingService, embedding_provider: KeywordEmbeddingProvider
    ) -> None:
        embedding_provider.fail_with = EmbeddingError("quota exceeded")

        with pytest.raises(EmbeddingError, match="quota exceeded"):
            await embedding_service.embed("hello")

    async def test_timeout(self) -> None:
        provider = KeywordEmbeddingProvider()
        provider.delay = 0.5
        service = EmbeddingService(provider, timeout_seconds=0.05, config=make_settings())

        with pytest.raises(EmbeddingError, match="timed out"):
            await service.embed("slow")

    async def test_dimension_mismatch(self) -> None:
        provider = KeywordEmbeddingProvider(dimensions=8)
        service = EmbeddingService(provider, dimensions=16, config=make_settings())

        with pytest.raises(EmbeddingError, match="expected 16"):
            await service.embed("short vector")

    async def test_cache_memoizes_identical_inputs(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=60, config=make_settings())

        await service.embed("cash balance")
        await service.embed("cash balance")

        assert len(provider.calls) == 1

    async def test_cache_disabled_with_zero_ttl(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=0, config=make_settings())

        await service.embed("cash balance")
        await service.embed("cash balance")

        assert len(provider.calls) == 2

    async def test_cache_expires(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=0.01, config=make_settings())

        await service.embed("cash balance")
        await asyncio.sleep(0.05)
        await service.embed("cash balance")

        assert len(provider.calls) == 2

    async def test_expired_entries_purged(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=0.01, config=make_settings())
        for i in range(200):
            await service.embed(f"invoice {i}")
        await asyncio.sleep(0.05)

        await service.embed("one more invoice")

        assert service.cache_size == 1

    async def test_cache_size_capped(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=60, config=make_settings(), max_cache_entries=10)
        for i in range(50):
            await service.embed(f"invoice {i}")

        assert service.cache_size == 10
        # Oldest entries go first
        await service.embed("invoice 49")
        await service.embed("invoice 0")
        assert len(provider.calls) == 51

    async def test_clear_cache(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=60, config=make_settings())

        await service.embed("cash balance")
        service.clear_cache()
        await service.embed("cash balance")

        assert len(provider.calls) == 2

    async def test_embed_batch_preserves_order_and_uses_cache(self) -> None:
        provider = KeywordEmbeddingProvider()
        service = EmbeddingService(provider, cache_ttl_seconds=60, config=make_settings())
        cached = await service.embed("second")

        vectors = await service.embed_batch(["first", "second", "third"])

        assert len(vectors) == 3
        assert vectors[1] == cached
        assert provider.calls[-1] == ["first", "third"]

    async def test_embed_batch_empty(self, embedding_service: EmbeddingService) -> None:
        assert await embedding_service.embed_batch([]) == []

    async def test_embed_batch_rejects_empty_member(self, embedding_service: EmbeddingService) -> None:
        with pytest.raises(EmbeddingError):
            await embedding_service.embed_batch(["ok", ""])


class TestCreateEmbeddingProvider:
    """Tests for provider selection."""

    def test_local_provider(self) -> None:
        provider = create_embedding_provider(
            make_settings(EMBEDDING_PROVIDER="sentence-transformers", EMBEDDING_DIMENSIONS=384)
        )

        assert isinstance(provider, SentenceTransformerEmbeddingProvider)
        assert provider.dimensions == 384

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            create_embedding_provider(make_settings(EMBEDDING_PROVIDER="bogus"))
