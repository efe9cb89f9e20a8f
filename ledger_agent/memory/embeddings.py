"""Embedding service for memory similarity search.

This module wraps an embedding provider (OpenAI by default, or a local
sentence-transformers model) and converts text to fixed-dimension vectors.
"""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Protocol

import numpy as np
import openai
import structlog

from ledger_agent.config import Settings, settings
from ledger_agent.orchestration.errors import EmbeddingError

logger = structlog.get_logger(__name__)

# Local model configuration
LOCAL_MODEL = "all-MiniLM-L6-v2"
LOCAL_EMBEDDING_DIM = 384

# Upper bound on memoized vectors
MAX_CACHE_ENTRIES = 1024


class EmbeddingProvider(Protocol):
    """Backend that turns a batch of texts into vectors."""

    @property
    def dimensions(self) -> int: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingProvider:
    """Embeddings from the OpenAI API.

    Example:
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-small")
        vectors = await provider.embed(["Invoice INV-001 is overdue"])
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._client = client or openai.AsyncOpenAI()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(input=texts, model=self._model)
        except openai.OpenAIError as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e
        return [list(item.embedding) for item in response.data]


class SentenceTransformerEmbeddingProvider:
    """Local embeddings using sentence-transformers.

    Uses the all-MiniLM-L6-v2 model by default, which produces 384-dimensional
    embeddings and is optimized for semantic similarity.
    """

    def __init__(self, model_name: str = LOCAL_MODEL, dimensions: int = LOCAL_EMBEDDING_DIM) -> None:
        self._model_name = model_name
        self._dimensions = dimensions
        self._model: Any = None
        self._logger = logger.bind(component="sentence_transformer_provider")

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_model(self) -> Any:
        """Lazy load the sentence-transformers model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._logger.info("loading_embedding_model", model=self._model_name)
            self._model = SentenceTransformer(self._model_name)
            self._logger.info("embedding_model_loaded", model=self._model_name)
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        model = self._get_model()
        embeddings = await asyncio.to_thread(model.encode, texts, convert_to_numpy=True)
        return [emb.tolist() for emb in embeddings]


def create_embedding_provider(config: Settings | None = None) -> EmbeddingProvider:
    """Build the provider selected by ``EMBEDDING_PROVIDER``."""
    cfg = config or settings
    if cfg.EMBEDDING_PROVIDER == "openai":
        return OpenAIEmbeddingProvider(
            model=cfg.EMBEDDING_MODEL,
            dimensions=cfg.EMBEDDING_DIMENSIONS,
        )
    if cfg.EMBEDDING_PROVIDER in ("sentence-transformers", "local"):
        # OpenAI model names are meaningless to sentence-transformers
        model_name = cfg.EMBEDDING_MODEL
        if model_name.startswith("text-embedding-"):
            model_name = LOCAL_MODEL
        return SentenceTransformerEmbeddingProvider(
            model_name=model_name,
            dimensions=cfg.EMBEDDING_DIMENSIONS,
        )
    raise ValueError(f"Unknown embedding provider: {cfg.EMBEDDING_PROVIDER}")


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors have different dimensions.
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")

    vec_a = np.asarray(a, dtype=float)
    vec_b = np.asarray(b, dtype=float)
    norm = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / norm)


def cosine_similarities(query: list[float], candidates: list[list[float]]) -> list[float]:
    """Cosine similarity of ``query`` against each candidate row."""
    if not candidates:
        return []

    query_vec = np.asarray(query, dtype=float)
    matrix = np.asarray(candidates, dtype=float)
    if matrix.shape[1] != query_vec.shape[0]:
        raise ValueError(f"Dimension mismatch: {matrix.shape[1]} != {query_vec.shape[0]}")

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vec)
    dots = matrix @ query_vec
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores.tolist()


class EmbeddingService:
    """Converts text to fixed-dimension vectors.

    Identical inputs are memoized for a short TTL. Every vector returned has
    exactly ``dimensions`` entries.

    Example:
        service = EmbeddingService(provider)
        embedding = await service.embed("Customer Acme pays net 30")
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        dimensions: int | None = None,
        cache_ttl_seconds: float | None = None,
        timeout_seconds: float | None = None,
        config: Settings | None = None,
        max_cache_entries: int = MAX_CACHE_ENTRIES,
    ) -> None:
        """Initialize the embedding service.

        Args:
            provider: Embedding backend. Built from settings if not provided.
            dimensions: Expected vector dimension.
            cache_ttl_seconds: Memoization window, 0 disables it.
            timeout_seconds: Timeout for a single provider call.
            config: Settings to read defaults from.
            max_cache_entries: Oldest entries are evicted past this size.
        """
        cfg = config or settings
        self._provider = provider or create_embedding_provider(cfg)
        self._dimensions = cfg.EMBEDDING_DIMENSIONS if dimensions is None else dimensions
        self._cache_ttl = cfg.EMBEDDING_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        self._timeout = cfg.EMBEDDING_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self._max_cache_entries = max_cache_entries
        self._cache: OrderedDict[str, tuple[float, list[float]]] = OrderedDict()
        self._logger = logger.bind(component="embedding_service")

    @property
    def dimensions(self) -> int:
        """Return the embedding dimension."""
        return self._dimensions

    def _cached(self, text: str) -> list[float] | None:
        if self._cache_ttl <= 0:
            return None
        entry = self._cache.get(text)
        if entry is None:
            return None
        stored_at, vector = entry
        if time.monotonic() - stored_at > self._cache_ttl:
            del self._cache[text]
            return None
        return vector

    def _remember(self, text: str, vector: list[float]) -> None:
        if self._cache_ttl <= 0:
            return
        now = time.monotonic()
        self._cache.pop(text, None)
        self._cache[text] = (now, vector)

        # Entries are kept in insertion order, so expired ones sit at the front
        while self._cache:
            stored_at, _ = next(iter(self._cache.values()))
            if now - stored_at <= self._cache_ttl and len(self._cache) <= self._max_cache_entries:
                break
            self._cache.popitem(last=False)

    @property
    def cache_size(self) -> int:
        """Number of memoized vectors currently held."""
        return len(self._cache)

    def _check(self, vector: list[float]) -> list[float]:
        if len(vector) != self._dimensions:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimensions}",
                details={"expected": self._dimensions, "actual": len(vector)},
            )
        return vector

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = await asyncio.wait_for(self._provider.embed(texts), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingError(
                f"Embedding request timed out after {self._timeout}s",
                details={"timeout_seconds": self._timeout},
            ) from e
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        return [self._check(list(v)) for v in vectors]

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed.

        Returns:
            Embedding vector of ``dimensions`` floats.

        Raises:
            EmbeddingError: On empty text, provider failure, timeout or a
                vector of the wrong dimension.
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        cached = self._cached(text)
        if cached is not None:
            return cached

        vector = (await self._call_provider([text]))[0]
        self._remember(text, vector)
        self._logger.debug("text_embedded", text_length=len(text))
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed.

        Returns:
            List of embedding vectors in input order.
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise EmbeddingError("Cannot embed empty text")

        results: list[list[float] | None] = [self._cached(t) for t in texts]
        missing = [i for i, r in enumerate(results) if r is None]
        if missing:
            vectors = await self._call_provider([texts[i] for i in missing])
            for i, vector in zip(missing, vectors):
                results[i] = vector
                self._remember(texts[i], vector)

        return [r for r in results if r is not None]

    def clear_cache(self) -> None:
        """Drop all memoized embeddings."""
        self._cache.clear()
