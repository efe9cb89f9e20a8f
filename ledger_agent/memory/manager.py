"""Memory manager for the agent's long-term memory.

This module provides the high-level API for storing, recalling, extracting
and pruning memories, plus context generation for agent prompts.
"""

import json
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ledger_agent.config import Settings, settings
from ledger_agent.llm.base import AnswerResponse, ChatMessage, LLMProvider
from ledger_agent.memory.embeddings import EmbeddingService, cosine_similarities
from ledger_agent.memory.models import (
    Memory,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    UserPreference,
    clamp_unit,
    utcnow,
)
from ledger_agent.memory.prompts import (
    CONSOLIDATION_PROMPT,
    FACT_EXTRACTION_PROMPT,
    PREFERENCE_LEARNING_PROMPT,
)
from ledger_agent.memory.store import MemoryStore
from ledger_agent.orchestration.errors import (
    EmbeddingError,
    LLMProviderError,
    MemoryStoreError,
)

logger = structlog.get_logger(__name__)

# Conversation text sent to extraction prompts is capped at this many characters
MAX_EXTRACTION_CHARS = 4000

TYPE_LABELS = {
    MemoryType.FACT: "Fact",
    MemoryType.PREFERENCE: "Preference",
    MemoryType.CONVERSATION: "Previous conversation",
    MemoryType.TASK: "Note",
}


class ExtractedFact(BaseModel):
    """One item of the fact extraction response."""

    fact: str = Field(min_length=1)
    importance: float = 0.5


class ExtractedPreference(BaseModel):
    """One item of the preference learning response."""

    key: str = Field(min_length=1)
    value: str
    confidence: float = 0.5


_facts_adapter = TypeAdapter(list[ExtractedFact])
_preferences_adapter = TypeAdapter(list[ExtractedPreference])


def _extract_json(text: str) -> str:
    """Strip a markdown code fence around a JSON payload, if present."""
    json_str = text.strip()
    if "```json" in json_str:
        start = json_str.find("```json") + 7
        end = json_str.find("```", start)
        json_str = json_str[start:end].strip()
    elif "```" in json_str:
        start = json_str.find("```") + 3
        end = json_str.find("```", start)
        json_str = json_str[start:end].strip()
    return json_str


def _conversation_text(messages: list[ChatMessage]) -> str:
    lines = [f"{m.role}: {m.content}" for m in messages if m.role in ("user", "assistant") and m.content]
    return "\n".join(lines)[:MAX_EXTRACTION_CHARS]


class MemoryManager:
    """High-level API for agent memory operations.

    Coordinates the embedding service, the memory store and (for extraction
    and consolidation summaries) an LLM provider.

    Example:
        manager = MemoryManager(store, embedding_service, llm=provider)
        await manager.initialize()

        await manager.store("Acme Corp pays invoices net 45", MemoryType.FACT)
        results = await manager.recall("When does Acme usually pay?")
        context = manager.format_for_context(results)
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        embedding_service: EmbeddingService | None = None,
        llm: LLMProvider | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the memory manager.

        Args:
            store: Memory store instance. Created if not provided.
            embedding_service: Embedding service instance. Created if not provided.
            llm: Provider used for extraction and summarisation. Extraction
                returns nothing and consolidation concatenates without it.
            config: Settings to read thresholds from.
        """
        self._config = config or settings
        self._embedding_service = embedding_service or EmbeddingService(config=self._config)
        self._store = store or MemoryStore(
            db_path=self._config.MEMORY_DB_PATH,
            dimensions=self._embedding_service.dimensions,
        )
        self._llm = llm
        self._logger = logger.bind(component="memory_manager")
        self._initialized = False

    @property
    def memory_store(self) -> MemoryStore:
        return self._store

    async def initialize(self) -> None:
        """Initialize the memory manager and underlying store."""
        if not self._initialized:
            await self._store.initialize()
            self._initialized = True
            self._logger.info("memory_manager_initialized")

    async def close(self) -> None:
        """Close the memory manager and release resources."""
        await self._store.close()
        self._initialized = False

    # ------------------------------------------------------------------
    # Store and recall
    # ------------------------------------------------------------------

    async def store(
        self,
        content: str,
        memory_type: MemoryType = MemoryType.FACT,
        importance: float | None = None,
        source_message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Memory:
        """Store a new memory with an auto-generated embedding.

        Args:
            content: The text content of the memory.
            memory_type: Category of memory.
            importance: Score from 0-1, defaults to 0.5.
            source_message_id: Conversation message this was learned from.
            metadata: Additional structured data.

        Returns:
            The stored memory.

        Raises:
            MemoryStoreError: If embedding or persistence fails.
        """
        try:
            embedding = await self._embedding_service.embed(content)
        except EmbeddingError as e:
            raise MemoryStoreError(
                f"Could not embed memory: {e.message}",
                operation="store",
            ) from e

        memory = Memory(
            content=content,
            memory_type=memory_type,
            embedding=embedding,
            importance=0.5 if importance is None else importance,
            source_message_id=source_message_id,
            metadata=metadata or {},
        )
        await self._store.save(memory)

        self._logger.debug(
            "memory_stored",
            memory_id=memory.id,
            memory_type=memory_type.value,
            importance=memory.importance,
            content_length=len(content),
        )
        return memory

    async def recall(
        self,
        query: str,
        limit: int | None = None,
        min_similarity: float | None = None,
        types: list[MemoryType] | None = None,
    ) -> list[MemorySearchResult]:
        """Recall memories relevant to ``query``.

        Every result clears ``min_similarity``. Results are ordered by score,
        then importance, then most recent access. Each returned memory has its
        access count incremented and its last access refreshed.

        Args:
            query: The query text.
            limit: Maximum number of results.
            min_similarity: Minimum cosine similarity.
            types: Only recall these memory types.

        Returns:
            Ranked results, empty when nothing clears the threshold.

        Raises:
            EmbeddingError: If the query cannot be embedded.
            MemoryStoreError: If the store cannot be read.
        """
        if not query or not query.strip():
            return []

        limit = self._config.RECALL_LIMIT if limit is None else limit
        min_similarity = self._config.MIN_SIMILARITY if min_similarity is None else min_similarity

        query_embedding = await self._embedding_service.embed(query)
        results = await self._store.search_similar(
            query_embedding=query_embedding,
            limit=limit,
            min_similarity=min_similarity,
            memory_types=types,
        )

        if results:
            accessed_at = utcnow()
            await self._store.record_access([r.memory.id for r in results], accessed_at)
            for result in results:
                result.memory.access_count += 1
                result.memory.last_accessed_at = accessed_at

        self._logger.debug(
            "memories_recalled",
            query_length=len(query),
            results_count=len(results),
            top_score=results[0].score if results else 0,
        )
        return results

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self) -> list[UserPreference]:
        """Return the current preference snapshot."""
        return await self._store.list_preferences()

    async def get_preference(self, key: str) -> UserPreference | None:
        return await self._store.get_preference(key)

    async def set_preference(self, key: str, value: str, confidence: float = 1.0) -> UserPreference:
        """Explicitly set a preference, overwriting any learned value."""
        preference = UserPreference(key=key, value=value, confidence=confidence, source="manual")
        await self._store.upsert_preference(preference)
        self._logger.info("preference_set", key=key)
        return preference

    async def _upsert_learned(self, preference: UserPreference) -> bool:
        """Write a learned preference unless it would regress confidence below the floor."""
        existing = await self._store.get_preference(preference.key)
        floor = self._config.PREFERENCE_CONFIDENCE_FLOOR
        if (
            existing is not None
            and preference.confidence < floor
            and preference.confidence < existing.confidence
        ):
            self._logger.debug(
                "preference_update_skipped",
                key=preference.key,
                incoming_confidence=preference.confidence,
                existing_confidence=existing.confidence,
            )
            return False
        await self._store.upsert_preference(preference)
        return True

    # ------------------------------------------------------------------
    # LLM extraction
    # ------------------------------------------------------------------

    async def _complete_json(self, prompt: str, messages: list[ChatMessage], operation: str) -> str | None:
        """Run an extraction prompt over the conversation, returning raw JSON text."""
        if self._llm is None:
            return None

        conversation = _conversation_text(messages)
        if not conversation:
            return None

        try:
            response = await self._llm.complete(
                [
                    ChatMessage(role="system", content=prompt),
                    ChatMessage(role="user", content=f"Conversation:\n{conversation}"),
                ],
                temperature=self._config.EXTRACTION_TEMPERATURE,
                model=self._config.FAST_MODEL,
            )
        except LLMProviderError as e:
            self._logger.warning(f"{operation}_llm_failed", error=e.message)
            return None

        return _extract_json(response.text)

    async def extract_facts(
        self,
        messages: list[ChatMessage],
        source_message_id: str | None = None,
    ) -> list[Memory]:
        """Extract durable facts from a conversation and store them.

        Malformed model output is treated as "no facts found".

        Args:
            messages: Conversation window to analyse.
            source_message_id: Message the facts are attributed to.

        Returns:
            The stored fact memories.
        """
        raw = await self._complete_json(FACT_EXTRACTION_PROMPT, messages, "fact_extraction")
        if not raw:
            return []

        try:
            facts = _facts_adapter.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            self._logger.warning("fact_extraction_unparseable", error=str(e))
            return []

        stored: list[Memory] = []
        for item in facts:
            try:
                memory = await self.store(
                    item.fact,
                    MemoryType.FACT,
                    importance=clamp_unit(item.importance),
                    source_message_id=source_message_id,
                )
            except MemoryStoreError as e:
                self._logger.warning("fact_store_failed", error=e.message)
                continue
            stored.append(memory)

        self._logger.info("facts_extracted", count=len(stored))
        return stored

    async def learn_preferences(self, messages: list[ChatMessage]) -> list[UserPreference]:
        """Learn user preferences from a conversation.

        Returns:
            The preferences that were written.
        """
        raw = await self._complete_json(PREFERENCE_LEARNING_PROMPT, messages, "preference_learning")
        if not raw:
            return []

        try:
            items = _preferences_adapter.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            self._logger.warning("preference_learning_unparseable", error=str(e))
            return []

        learned: list[UserPreference] = []
        for item in items:
            preference = UserPreference(
                key=item.key,
                value=item.value,
                confidence=item.confidence,
                source="conversation",
            )
            if await self._upsert_learned(preference):
                learned.append(preference)

        self._logger.info("preferences_learned", count=len(learned))
        return learned

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _group_similar(self, memories: list[Memory]) -> list[list[Memory]]:
        """Greedily group near-duplicate memories of the same type.

        Each group is seeded by the oldest ungrouped memory and only admits
        memories similar to every current member. Groups made only of
        memories a previous pass already examined are skipped.
        """
        similarity_bar = self._config.CONSOLIDATION_SIMILARITY
        max_group = max(2, self._config.CONSOLIDATION_MAX_GROUP_SIZE)
        grouped: set[str] = set()
        groups: list[list[Memory]] = []

        for i, seed in enumerate(memories):
            if seed.id in grouped:
                continue
            candidates = [
                m for m in memories[i + 1 :]
                if m.id not in grouped and m.memory_type == seed.memory_type
            ]
            if not candidates:
                continue

            scores = cosine_similarities(seed.embedding, [m.embedding for m in candidates])
            group = [seed]
            for candidate, score in zip(candidates, scores):
                if len(group) >= max_group:
                    break
                if score < similarity_bar:
                    continue
                # Every member must be a near-duplicate of every other
                others = cosine_similarities(candidate.embedding, [m.embedding for m in group[1:]])
                if all(s >= similarity_bar for s in others):
                    group.append(candidate)

            if len(group) > 1 and any(not m.consolidated for m in group):
                grouped.update(m.id for m in group)
                groups.append(group)

        return groups

    async def _merge_content(self, group: list[Memory], use_llm: bool) -> tuple[str, bool]:
        """Return the merged text and whether an LLM call was spent on it."""
        contents = list(dict.fromkeys(m.content.strip() for m in group))
        if len(contents) == 1:
            return contents[0], False

        if use_llm and self._llm is not None:
            notes = "\n".join(f"- {c}" for c in contents)
            try:
                response = await self._llm.complete(
                    [ChatMessage(role="user", content=CONSOLIDATION_PROMPT.format(notes=notes))],
                    temperature=self._config.EXTRACTION_TEMPERATURE,
                    model=self._config.FAST_MODEL,
                )
                if isinstance(response, AnswerResponse) and response.text.strip():
                    return response.text.strip(), True
            except LLMProviderError as e:
                self._logger.warning("consolidation_summary_failed", error=e.message)
            return "; ".join(contents), True

        return "; ".join(contents), False

    async def consolidate(self) -> int:
        """Merge near-duplicate memories once the store grows past the threshold.

        Running it twice in a row with no new memories merges nothing the
        second time.

        Returns:
            Number of original memories removed.
        """
        live = await self._store.count()
        if live <= self._config.CONSOLIDATION_THRESHOLD:
            return 0

        memories = await self._store.list_memories()
        groups = self._group_similar(memories)
        llm_budget = self._config.CONSOLIDATION_MAX_LLM_CALLS
        removed = 0
        merged_ids: set[str] = set()

        for group in groups:
            content, spent = await self._merge_content(group, use_llm=llm_budget > 0)
            if spent:
                llm_budget -= 1

            try:
                embedding = await self._embedding_service.embed(content)
            except EmbeddingError as e:
                self._logger.warning("consolidation_embed_failed", error=e.message, group_size=len(group))
                continue

            original_ids = [m.id for m in group]
            merged = Memory(
                content=content,
                memory_type=group[0].memory_type,
                embedding=embedding,
                importance=max(m.importance for m in group),
                created_at=min(m.created_at for m in group),
                last_accessed_at=max(m.last_accessed_at for m in group),
                access_count=sum(m.access_count for m in group),
                metadata={"merged_from": original_ids},
                consolidated=True,
            )
            removed += await self._store.replace(original_ids, merged)
            merged_ids.update(original_ids)

        await self._store.mark_consolidated(
            [m.id for m in memories if m.id not in merged_ids and not m.consolidated]
        )

        self._logger.info(
            "memories_consolidated",
            groups=len(groups),
            removed=removed,
            live_before=live,
        )
        return removed

    async def forget(self, now: datetime | None = None) -> int:
        """Delete memories that are both old and unimportant.

        A memory is removed only when it is older than ``MAX_AGE_DAYS`` and
        its importance is below ``MIN_IMPORTANCE``.

        Returns:
            Number of memories removed.
        """
        cutoff = (now or utcnow()) - timedelta(days=self._config.MAX_AGE_DAYS)
        return await self._store.delete_forgettable(cutoff, self._config.MIN_IMPORTANCE)

    async def run_maintenance(self) -> dict[str, int]:
        """Run maintenance tasks: forget stale memories, then consolidate.

        Returns:
            Dictionary with counts of affected memories.
        """
        forgotten = await self.forget()
        consolidated = await self.consolidate()

        self._logger.info(
            "maintenance_complete",
            forgotten=forgotten,
            consolidated=consolidated,
        )
        return {"forgotten": forgotten, "consolidated": consolidated}

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def format_for_context(self, memories: list[MemorySearchResult] | list[Memory]) -> str:
        """Render memories for prompt injection, preserving the given order.

        Returns:
            Formatted context block, or an empty string for no memories.
        """
        if not memories:
            return ""

        lines = ["## Relevant Context from Memory"]
        for item in memories:
            memory = item.memory if isinstance(item, MemorySearchResult) else item
            lines.append(f"- [{TYPE_LABELS[memory.memory_type]}] {memory.content}")
        return "\n".join(lines)

    async def get_stats(self) -> MemoryStats:
        """Return counts and importance statistics for the store."""
        return await self._store.stats()
