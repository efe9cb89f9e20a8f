"""Memory data models for the agent's long-term memory.

This module defines the core data structures for storing and recalling
agent memories: facts learned from conversations, user preferences,
conversation summaries and task notes.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current time used for all memory timestamps."""
    return datetime.now(timezone.utc)


def clamp_unit(value: float) -> float:
    """Clamp a score to the [0, 1] interval."""
    return max(0.0, min(1.0, float(value)))


class MemoryType(Enum):
    """Types of memories stored by the agent."""

    FACT = "fact"  # Business facts extracted from conversations
    PREFERENCE = "preference"  # How the user likes things done
    CONVERSATION = "conversation"  # Summaries of past exchanges
    TASK = "task"  # Notes about pending or completed work


@dataclass
class Memory:
    """A single memory stored by the agent.

    Attributes:
        id: Unique identifier for the memory.
        content: The text content of the memory.
        memory_type: Category of memory.
        embedding: Vector embedding for similarity search.
        importance: Score from 0-1, used as a decay-resistance signal.
        created_at: When the memory was created.
        last_accessed_at: Last time the memory was recalled.
        access_count: Number of recall hits.
        source_message_id: Conversation message the memory was extracted from.
        metadata: Additional structured data (merged ids, etc.).
        consolidated: Whether a consolidation pass has examined this memory.
    """

    content: str
    memory_type: MemoryType
    embedding: list[float] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    importance: float = 0.5
    created_at: datetime = field(default_factory=utcnow)
    last_accessed_at: datetime = field(default_factory=utcnow)
    access_count: int = 0
    source_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    consolidated: bool = False

    def __post_init__(self) -> None:
        self.importance = clamp_unit(self.importance)

    def to_dict(self) -> dict[str, Any]:
        """Convert memory to dictionary for serialization."""
        return {
            "id": self.id,
            "content": self.content,
            "memory_type": self.memory_type.value,
            "embedding": self.embedding,
            "importance": self.importance,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "access_count": self.access_count,
            "source_message_id": self.source_message_id,
            "metadata": self.metadata,
            "consolidated": self.consolidated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Memory":
        """Create memory from dictionary."""
        return cls(
            id=data["id"],
            content=data["content"],
            memory_type=MemoryType(data["memory_type"]),
            embedding=data.get("embedding", []),
            importance=data.get("importance", 0.5),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_accessed_at=datetime.fromisoformat(data["last_accessed_at"]),
            access_count=data.get("access_count", 0),
            source_message_id=data.get("source_message_id"),
            metadata=data.get("metadata", {}),
            consolidated=data.get("consolidated", False),
        )


@dataclass
class MemorySearchResult:
    """Result from a memory similarity search.

    Attributes:
        memory: The recalled memory.
        score: Cosine similarity between the query and the memory.
    """

    memory: Memory
    score: float


@dataclass
class UserPreference:
    """A learned or explicitly set user preference.

    At most one live value exists per key.
    """

    key: str
    value: str
    confidence: float = 0.5
    source: str = "conversation"
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "source": self.source,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class MemoryStats:
    """Read-only snapshot of the memory store."""

    count: int
    by_type: dict[str, int]
    avg_importance: float
    oldest: datetime | None = None
    newest: datetime | None = None
    preference_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "by_type": self.by_type,
            "avg_importance": self.avg_importance,
            "oldest": self.oldest.isoformat() if self.oldest else None,
            "newest": self.newest.isoformat() if self.newest else None,
            "preference_count": self.preference_count,
        }
