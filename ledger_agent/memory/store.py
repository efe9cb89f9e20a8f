"""SQLite-based memory store for agent memories.

This module provides persistent storage for agent memories and user
preferences using SQLite, with vector similarity search using NumPy.
Mutations are serialized behind a single writer lock; reads run freely.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from ledger_agent.config import settings
from ledger_agent.memory.embeddings import cosine_similarities
from ledger_agent.memory.models import (
    Memory,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    UserPreference,
    utcnow,
)
from ledger_agent.orchestration.errors import MemoryStoreError

logger = structlog.get_logger(__name__)


class MemoryStore:
    """SQLite-based storage for agent memories.

    Provides CRUD operations and similarity search for memories.
    Embeddings are stored as JSON arrays and similarity is computed
    in Python using NumPy.

    Example:
        store = MemoryStore(db_path="./data/memories.db", dimensions=1536)
        await store.initialize()
        await store.save(memory)
        results = await store.search_similar(query_embedding, limit=5)
    """

    def __init__(self, db_path: str | None = None, dimensions: int | None = None) -> None:
        """Initialize the memory store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
                    Defaults to the MEMORY_DB_PATH setting.
            dimensions: Required embedding dimension. If not given, the
                    dimension of the first stored memory is enforced.
        """
        self._db_path = db_path or settings.MEMORY_DB_PATH
        self._dimensions = dimensions
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._logger = logger.bind(component="memory_store")

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the open connection, wrapping database errors."""
        if self._connection is None:
            raise MemoryStoreError("Memory store is not initialized", operation=operation)
        try:
            yield self._connection
        except aiosqlite.Error as e:
            self._logger.error("memory_store_error", operation=operation, error=str(e))
            raise MemoryStoreError(f"{operation} failed: {e}", operation=operation) from e

    async def initialize(self) -> None:
        """Initialize the database and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = await aiosqlite.connect(self._db_path)
        except aiosqlite.Error as e:
            raise MemoryStoreError(f"Cannot open {self._db_path}: {e}", operation="initialize") from e
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()
        if self._dimensions is None:
            self._dimensions = await self._stored_dimensions()
        self._logger.info("memory_store_initialized", db_path=self._db_path, dimensions=self._dimensions)

    async def _create_tables(self) -> None:
        """Create the memories and preferences tables if they don't exist."""
        async with self._guard("create_tables") as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    memory_type TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    importance REAL NOT NULL DEFAULT 0.5,
                    created_at TEXT NOT NULL,
                    last_accessed_at TEXT NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0,
                    source_message_id TEXT,
                    metadata TEXT NOT NULL,
                    consolidated INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Create indexes for common queries
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(memory_type)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance DESC)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at)
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS user_preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT 0.5,
                    source TEXT NOT NULL DEFAULT 'conversation',
                    updated_at TEXT NOT NULL
                )
            """)

            await db.commit()

    async def _stored_dimensions(self) -> int | None:
        async with self._guard("stored_dimensions") as db:
            cursor = await db.execute("SELECT embedding FROM memories LIMIT 1")
            row = await cursor.fetchone()
        if row is None:
            return None
        return len(json.loads(row["embedding"]))

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def _check_dimensions(self, memory: Memory) -> None:
        if not memory.embedding:
            raise MemoryStoreError("Memory has no embedding", operation="save")
        if self._dimensions is None:
            self._dimensions = len(memory.embedding)
        elif len(memory.embedding) != self._dimensions:
            raise MemoryStoreError(
                f"Embedding has {len(memory.embedding)} dimensions, store requires {self._dimensions}",
                operation="save",
                details={"memory_id": memory.id},
            )

    async def _insert(self, db: aiosqlite.Connection, memory: Memory) -> None:
        await db.execute(
            """
            INSERT OR REPLACE INTO memories
            (id, content, memory_type, embedding, importance, created_at,
             last_accessed_at, access_count, source_message_id, metadata, consolidated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                memory.id,
                memory.content,
                memory.memory_type.value,
                json.dumps(memory.embedding),
                memory.importance,
                memory.created_at.isoformat(),
                memory.last_accessed_at.isoformat(),
                memory.access_count,
                memory.source_message_id,
                json.dumps(memory.metadata),
                int(memory.consolidated),
            ),
        )

    async def save(self, memory: Memory) -> Memory:
        """Save a memory to the store.

        Args:
            memory: Memory to save.

        Returns:
            The saved memory.

        Raises:
            MemoryStoreError: If persistence fails or the embedding has the
                wrong dimension.
        """
        self._check_dimensions(memory)
        async with self._write_lock, self._guard("save") as db:
            await self._insert(db, memory)
            await db.commit()

        self._logger.debug(
            "memory_saved",
            memory_id=memory.id,
            memory_type=memory.memory_type.value,
        )
        return memory

    async def get(self, memory_id: str) -> Memory | None:
        """Get a memory by ID.

        Args:
            memory_id: The memory ID.

        Returns:
            The memory if found, None otherwise.
        """
        async with self._guard("get") as db:
            cursor = await db.execute("SELECT * FROM memories WHERE id = ?", (memory_id,))
            row = await cursor.fetchone()

        if row is None:
            return None
        return self._row_to_memory(row)

    async def delete(self, memory_id: str) -> bool:
        """Delete a memory by ID.

        Returns:
            True if deleted, False if not found.
        """
        async with self._write_lock, self._guard("delete") as db:
            cursor = await db.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            await db.commit()

        deleted = cursor.rowcount > 0
        if deleted:
            self._logger.debug("memory_deleted", memory_id=memory_id)
        return deleted

    async def list_memories(
        self,
        memory_types: list[MemoryType] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Memory]:
        """List memories with an optional type filter.

        Args:
            memory_types: Only return these types.
            limit: Maximum number of results, all if None.
            offset: Number of results to skip.

        Returns:
            Memories ordered by creation time, oldest first.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if memory_types:
            placeholders = ",".join("?" * len(memory_types))
            conditions.append(f"memory_type IN ({placeholders})")
            params.extend(t.value for t in memory_types)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"SELECT * FROM memories WHERE {where_clause} ORDER BY created_at ASC, id ASC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        async with self._guard("list_memories") as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()

        return [self._row_to_memory(row) for row in rows]

    async def search_similar(
        self,
        query_embedding: list[float],
        limit: int = 10,
        min_similarity: float = 0.0,
        memory_types: list[MemoryType] | None = None,
    ) -> list[MemorySearchResult]:
        """Search for similar memories using cosine similarity.

        Results clear ``min_similarity`` and are sorted by score, then
        importance, then most recent access, all descending.

        Args:
            query_embedding: The query vector.
            limit: Maximum number of results.
            min_similarity: Minimum similarity threshold.
            memory_types: Only search these types.

        Returns:
            List of search results.
        """
        if self._dimensions is not None and len(query_embedding) != self._dimensions:
            raise MemoryStoreError(
                f"Query has {len(query_embedding)} dimensions, store requires {self._dimensions}",
                operation="search_similar",
            )

        memories = await self.list_memories(memory_types=memory_types)
        if not memories:
            return []

        scores = cosine_similarities(query_embedding, [m.embedding for m in memories])
        results = [
            MemorySearchResult(memory=memory, score=score)
            for memory, score in zip(memories, scores)
            if score >= min_similarity
        ]

        results.sort(
            key=lambda r: (r.score, r.memory.importance, r.memory.last_accessed_at),
            reverse=True,
        )
        return results[:limit]

    async def record_access(self, memory_ids: list[str], accessed_at: datetime | None = None) -> None:
        """Increment access counts and refresh last access time.

        Args:
            memory_ids: Memories that were recalled.
            accessed_at: Access time, now if not given.
        """
        if not memory_ids:
            return

        timestamp = (accessed_at or utcnow()).isoformat()
        async with self._write_lock, self._guard("record_access") as db:
            await db.executemany(
                """
                UPDATE memories
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE id = ?
                """,
                [(timestamp, memory_id) for memory_id in memory_ids],
            )
            await db.commit()

    async def delete_forgettable(self, cutoff: datetime, min_importance: float) -> int:
        """Delete memories created before ``cutoff`` with importance below ``min_importance``.

        Returns:
            Number of memories deleted.
        """
        async with self._write_lock, self._guard("delete_forgettable") as db:
            cursor = await db.execute(
                "DELETE FROM memories WHERE created_at < ? AND importance < ?",
                (cutoff.isoformat(), min_importance),
            )
            await db.commit()

        deleted = cursor.rowcount
        if deleted > 0:
            self._logger.info("memories_forgotten", count=deleted, cutoff=cutoff.isoformat())
        return deleted

    async def replace(self, original_ids: list[str], merged: Memory) -> int:
        """Atomically insert ``merged`` and delete the originals it replaces.

        Returns:
            Number of originals deleted.
        """
        self._check_dimensions(merged)
        placeholders = ",".join("?" * len(original_ids))
        async with self._write_lock, self._guard("replace") as db:
            await self._insert(db, merged)
            cursor = await db.execute(
                f"DELETE FROM memories WHERE id IN ({placeholders})",
                original_ids,
            )
            await db.commit()
        return cursor.rowcount

    async def mark_consolidated(self, memory_ids: list[str]) -> None:
        """Flag memories as examined by a consolidation pass."""
        if not memory_ids:
            return
        placeholders = ",".join("?" * len(memory_ids))
        async with self._write_lock, self._guard("mark_consolidated") as db:
            await db.execute(
                f"UPDATE memories SET consolidated = 1 WHERE id IN ({placeholders})",
                memory_ids,
            )
            await db.commit()

    async def count(self, memory_type: MemoryType | None = None) -> int:
        """Count memories, optionally filtered by type."""
        async with self._guard("count") as db:
            if memory_type:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM memories WHERE memory_type = ?",
                    (memory_type.value,),
                )
            else:
                cursor = await db.execute("SELECT COUNT(*) FROM memories")
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def stats(self) -> MemoryStats:
        """Aggregate counts and importance across the store."""
        by_type = {t.value: 0 for t in MemoryType}
        async with self._guard("stats") as db:
            cursor = await db.execute(
                "SELECT memory_type, COUNT(*) AS n FROM memories GROUP BY memory_type"
            )
            for row in await cursor.fetchall():
                by_type[row["memory_type"]] = row["n"]

            cursor = await db.execute(
                """
                SELECT COUNT(*) AS n, AVG(importance) AS avg_importance,
                       MIN(created_at) AS oldest, MAX(created_at) AS newest
                FROM memories
                """
            )
            totals = await cursor.fetchone()

            cursor = await db.execute("SELECT COUNT(*) FROM user_preferences")
            pref_row = await cursor.fetchone()

        count = totals["n"] if totals else 0
        return MemoryStats(
            count=count,
            by_type=by_type,
            avg_importance=float(totals["avg_importance"] or 0.0) if totals else 0.0,
            oldest=datetime.fromisoformat(totals["oldest"]) if count else None,
            newest=datetime.fromisoformat(totals["newest"]) if count else None,
            preference_count=pref_row[0] if pref_row else 0,
        )

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preference(self, key: str) -> UserPreference | None:
        async with self._guard("get_preference") as db:
            cursor = await db.execute("SELECT * FROM user_preferences WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return self._row_to_preference(row) if row else None

    async def list_preferences(self) -> list[UserPreference]:
        async with self._guard("list_preferences") as db:
            cursor = await db.execute("SELECT * FROM user_preferences ORDER BY key ASC")
            rows = await cursor.fetchall()
        return [self._row_to_preference(row) for row in rows]

    async def upsert_preference(self, preference: UserPreference) -> UserPreference:
        """Insert or overwrite the preference stored under ``preference.key``."""
        async with self._write_lock, self._guard("upsert_preference") as db:
            await db.execute(
                """
                INSERT INTO user_preferences (key, value, confidence, source, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    confidence = excluded.confidence,
                    source = excluded.source,
                    updated_at = excluded.updated_at
                """,
                (
                    preference.key,
                    preference.value,
                    preference.confidence,
                    preference.source,
                    preference.updated_at.isoformat(),
                ),
            )
            await db.commit()
        return preference

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_memory(self, row: aiosqlite.Row) -> Memory:
        """Convert a database row to a Memory object."""
        return Memory(
            id=row["id"],
            content=row["content"],
            memory_type=MemoryType(row["memory_type"]),
            embedding=json.loads(row["embedding"]),
            importance=row["importance"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_accessed_at=datetime.fromisoformat(row["last_accessed_at"]),
            access_count=row["access_count"],
            source_message_id=row["source_message_id"],
            metadata=json.loads(row["metadata"]),
            consolidated=bool(row["consolidated"]),
        )

    def _row_to_preference(self, row: aiosqlite.Row) -> UserPreference:
        return UserPreference(
            key=row["key"],
            value=row["value"],
            confidence=row["confidence"],
            source=row["source"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
