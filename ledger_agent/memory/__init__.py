"""Agent memory and learning system.

This module provides long-term memory so the agent can recall prior
context across conversations.

Features:
- Facts: Business facts extracted from conversations
- Preferences: How the user likes reports, formats and communication
- Conversation summaries and task notes
- Similarity search: Recall relevant memories using embeddings
- Memory lifecycle: Consolidation of near-duplicates and forgetting of stale memories
"""

from ledger_agent.memory.embeddings import (
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    SentenceTransformerEmbeddingProvider,
    cosine_similarity,
    create_embedding_provider,
)
from ledger_agent.memory.manager import MemoryManager
from ledger_agent.memory.models import (
    Memory,
    MemorySearchResult,
    MemoryStats,
    MemoryType,
    UserPreference,
)
from ledger_agent.memory.store import MemoryStore

__all__ = [
    "EmbeddingProvider",
    "EmbeddingService",
    "Memory",
    "MemoryManager",
    "MemorySearchResult",
    "MemoryStats",
    "MemoryStore",
    "MemoryType",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerEmbeddingProvider",
    "UserPreference",
    "cosine_similarity",
    "create_embedding_provider",
]
