"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _get_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        RECALL_LIMIT: Maximum memories returned by a recall.
        MIN_SIMILARITY: Minimum cosine similarity for a recalled memory.
        CONSOLIDATION_THRESHOLD: Live memory count above which consolidation runs.
        CONSOLIDATION_SIMILARITY: Pairwise similarity bar for merging memories.
        CONSOLIDATION_MAX_GROUP_SIZE: Largest group merged into one memory.
        CONSOLIDATION_MAX_LLM_CALLS: Summarisation calls allowed per consolidation run.
        MAX_AGE_DAYS: Age after which unimportant memories are forgotten.
        MIN_IMPORTANCE: Importance below which old memories are forgotten.
        PREFERENCE_CONFIDENCE_FLOOR: Learned preferences never regress below this.
        EMBEDDING_PROVIDER: "openai" or "sentence-transformers".
        EMBEDDING_MODEL: Embedding model name.
        EMBEDDING_DIMENSIONS: Dimension of every stored embedding.
        EMBEDDING_CACHE_TTL_SECONDS: Memoization window for identical inputs (0 disables).
        EMBEDDING_TIMEOUT_SECONDS: Timeout for a single embedding request.
        MAX_ITERATIONS: Reasoning loop iteration budget.
        STEP_TIMEOUT_MS: Timeout for a single reasoning step.
        PLANNING_TEMPERATURE: Temperature for planning calls.
        RESPONSE_TEMPERATURE: Temperature for final answer synthesis.
        EXTRACTION_TEMPERATURE: Temperature for fact/preference extraction.
        CHAT_MODEL: Model used for planning and answering.
        FAST_MODEL: Model used for extraction and summarisation.
        MAX_RESPONSE_TOKENS: Maximum tokens per completion.
        MEMORY_DB_PATH: SQLite database for memories and preferences.
        MEMORY_ENABLED: Whether recall and post-answer memory writes run.
        VALIDATION_ENABLED: Whether deterministic validation runs.
        BUSINESS_NAME: Business name injected into the system prompt.
        CURRENCY: Reporting currency.
        TAX_RATE: Default tax rate in percent.
        FISCAL_YEAR_END: Month number the fiscal year ends.
        LANGFUSE_HOST: Langfuse server host URL.
        LANGFUSE_PUBLIC_KEY: Langfuse public API key.
        LANGFUSE_SECRET_KEY: Langfuse secret API key.
        LOG_LEVEL: Logging level.
    """

    # Memory
    RECALL_LIMIT: int = 10
    MIN_SIMILARITY: float = 0.7
    CONSOLIDATION_THRESHOLD: int = 100
    CONSOLIDATION_SIMILARITY: float = 0.92
    CONSOLIDATION_MAX_GROUP_SIZE: int = 5
    CONSOLIDATION_MAX_LLM_CALLS: int = 10
    MAX_AGE_DAYS: int = 90
    MIN_IMPORTANCE: float = 0.3
    PREFERENCE_CONFIDENCE_FLOOR: float = 0.5
    MEMORY_DB_PATH: str = "./data/memories.db"
    MEMORY_ENABLED: bool = True

    # Embeddings
    EMBEDDING_PROVIDER: str = "openai"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536
    EMBEDDING_CACHE_TTL_SECONDS: float = 300.0
    EMBEDDING_TIMEOUT_SECONDS: float = 20.0

    # Reasoning
    MAX_ITERATIONS: int = 10
    STEP_TIMEOUT_MS: int = 30000
    PLANNING_TEMPERATURE: float = 0.3
    RESPONSE_TEMPERATURE: float = 0.7
    EXTRACTION_TEMPERATURE: float = 0.2
    VALIDATION_ENABLED: bool = True

    # Model settings
    CHAT_MODEL: str = "claude-sonnet-4-20250514"
    FAST_MODEL: str = "claude-3-5-haiku-20241022"
    MAX_RESPONSE_TOKENS: int = 2000

    # Business profile
    BUSINESS_NAME: str = "Your Business"
    CURRENCY: str = "USD"
    TAX_RATE: str = "0"
    FISCAL_YEAR_END: str = "12"

    # Observability
    LANGFUSE_HOST: str = "http://localhost:3000"
    LANGFUSE_PUBLIC_KEY: str | None = None
    LANGFUSE_SECRET_KEY: str | None = None

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def step_timeout_seconds(self) -> float:
        """Step timeout converted to seconds for asyncio."""
        return self.STEP_TIMEOUT_MS / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            RECALL_LIMIT=_get_int_env("RECALL_LIMIT", 10),
            MIN_SIMILARITY=_get_float_env("MIN_SIMILARITY", 0.7),
            CONSOLIDATION_THRESHOLD=_get_int_env("CONSOLIDATION_THRESHOLD", 100),
            CONSOLIDATION_SIMILARITY=_get_float_env("CONSOLIDATION_SIMILARITY", 0.92),
            CONSOLIDATION_MAX_GROUP_SIZE=_get_int_env("CONSOLIDATION_MAX_GROUP_SIZE", 5),
            CONSOLIDATION_MAX_LLM_CALLS=_get_int_env("CONSOLIDATION_MAX_LLM_CALLS", 10),
            MAX_AGE_DAYS=_get_int_env("MAX_AGE_DAYS", 90),
            MIN_IMPORTANCE=_get_float_env("MIN_IMPORTANCE", 0.3),
            PREFERENCE_CONFIDENCE_FLOOR=_get_float_env("PREFERENCE_CONFIDENCE_FLOOR", 0.5),
            MEMORY_DB_PATH=os.getenv("MEMORY_DB_PATH", "./data/memories.db"),
            MEMORY_ENABLED=not _get_bool_env("DISABLE_AGENT_MEMORY", default=False),
            EMBEDDING_PROVIDER=os.getenv("EMBEDDING_PROVIDER", "openai"),
            EMBEDDING_MODEL=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            EMBEDDING_DIMENSIONS=_get_int_env("EMBEDDING_DIMENSIONS", 1536),
            EMBEDDING_CACHE_TTL_SECONDS=_get_float_env("EMBEDDING_CACHE_TTL_SECONDS", 300.0),
            EMBEDDING_TIMEOUT_SECONDS=_get_float_env("EMBEDDING_TIMEOUT_SECONDS", 20.0),
            MAX_ITERATIONS=_get_int_env("MAX_ITERATIONS", 10),
            STEP_TIMEOUT_MS=_get_int_env("STEP_TIMEOUT_MS", 30000),
            PLANNING_TEMPERATURE=_get_float_env("PLANNING_TEMPERATURE", 0.3),
            RESPONSE_TEMPERATURE=_get_float_env("RESPONSE_TEMPERATURE", 0.7),
            EXTRACTION_TEMPERATURE=_get_float_env("EXTRACTION_TEMPERATURE", 0.2),
            VALIDATION_ENABLED=not _get_bool_env("DISABLE_AGENT_VALIDATION", default=False),
            CHAT_MODEL=os.getenv("CHAT_MODEL", "claude-sonnet-4-20250514"),
            FAST_MODEL=os.getenv("FAST_MODEL", "claude-3-5-haiku-20241022"),
            MAX_RESPONSE_TOKENS=_get_int_env("MAX_RESPONSE_TOKENS", 2000),
            BUSINESS_NAME=os.getenv("BUSINESS_NAME", "Your Business"),
            CURRENCY=os.getenv("CURRENCY", "USD"),
            TAX_RATE=os.getenv("TAX_RATE", "0"),
            FISCAL_YEAR_END=os.getenv("FISCAL_YEAR_END", "12"),
            LANGFUSE_HOST=os.getenv("LANGFUSE_HOST", "http://localhost:3000"),
            LANGFUSE_PUBLIC_KEY=os.getenv("LANGFUSE_PUBLIC_KEY"),
            LANGFUSE_SECRET_KEY=os.getenv("LANGFUSE_SECRET_KEY"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global settings instance
settings = Settings.from_env()
