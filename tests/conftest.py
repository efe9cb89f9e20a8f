"""Shared fakes and fixtures for the test suite."""

import asyncio
import inspect
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from ledger_agent.config import Settings
from ledger_agent.llm.base import AnswerResponse, ChatMessage, LLMResponse, ToolSchema
from ledger_agent.memory.embeddings import EmbeddingService
from ledger_agent.memory.manager import MemoryManager
from ledger_agent.memory.store import MemoryStore

TEST_DIMENSIONS = 64


class KeywordEmbeddingProvider:
    """Deterministic bag-of-words embeddings.

    Every distinct lowercase word gets its own axis, so texts sharing no
    words have similarity 0 and identical texts have similarity 1.
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS) -> None:
        self._dimensions = dimensions
        self._vocabulary: dict[str, int] = {}
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None
        self.delay: float = 0.0
        self.overrides: dict[str, list[float]] = {}

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> list[float]:
        if text in self.overrides:
            return list(self.overrides[text])
        vector = [0.0] * self._dimensions
        for word in text.lower().replace(",", " ").replace(".", " ").split():
            index = self._vocabulary.setdefault(word, len(self._vocabulary) % self._dimensions)
            vector[index] += 1.0
        return vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return [self.vector(t) for t in texts]


class ScriptedLLM:
    """LLM provider that replays a script of responses.

    Script items may be an LLMResponse, an exception to raise, or a
    (possibly async) callable receiving the messages. Once the script is
    exhausted ``default`` is returned.
    """

    def __init__(self, responses: list[Any] | None = None, default: LLMResponse | None = None) -> None:
        self.responses = list(responses or [])
        self.default = default or AnswerResponse(text="")
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        *,
        temperature: float = 0.5,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "tools": tools,
            "temperature": temperature,
            "model": model,
        })
        if not self.responses:
            return self.default
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(messages)
            if inspect.isawaitable(item):
                item = await item
        return item


def make_settings(**overrides: Any) -> Settings:
    """Settings tuned for tests: small vectors, no cache, fast steps."""
    base = Settings(
        EMBEDDING_DIMENSIONS=TEST_DIMENSIONS,
        EMBEDDING_CACHE_TTL_SECONDS=0,
        EMBEDDING_TIMEOUT_SECONDS=2.0,
        MIN_SIMILARITY=0.5,
        STEP_TIMEOUT_MS=2000,
        MAX_ITERATIONS=5,
        LOG_LEVEL="DEBUG",
    )
    return replace(base, **overrides)


@pytest.fixture
def db_path() -> str:
    """Path to a fresh SQLite file in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "test_memories.db")


@pytest.fixture
def test_settings(db_path: str) -> Settings:
    return make_settings(MEMORY_DB_PATH=db_path)


@pytest.fixture
def embedding_provider() -> KeywordEmbeddingProvider:
    return KeywordEmbeddingProvider()


@pytest.fixture
def embedding_service(embedding_provider: KeywordEmbeddingProvider, test_settings: Settings) -> EmbeddingService:
    return EmbeddingService(embedding_provider, config=test_settings)


@pytest.fixture
async def memory_store(db_path: str) -> MemoryStore:
    store = MemoryStore(db_path=db_path, dimensions=TEST_DIMENSIONS)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
async def memory_manager(
    memory_store: MemoryStore,
    embedding_service: EmbeddingService,
    scripted_llm: ScriptedLLM,
    test_settings: Settings,
) -> MemoryManager:
    manager = MemoryManager(memory_store, embedding_service, llm=scripted_llm, config=test_settings)
    await manager.initialize()
    yield manager
    await manager.close()
