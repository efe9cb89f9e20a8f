"""Tests for the memory tools."""

from ledger_agent.memory.manager import MemoryManager
from ledger_agent.memory.models import MemoryType
from ledger_agent.tools.base import ToolRegistry
from ledger_agent.tools.memory_tools import create_memory_tools


async def make_registry(manager: MemoryManager) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_all(create_memory_tools(manager))
    return registry


class TestMemoryTools:
    """Tests for search_memory and remember."""

    async def test_flags(self, memory_manager: MemoryManager) -> None:
        registry = await make_registry(memory_manager)

        assert registry.is_read_only("search_memory") is True
        assert registry.is_read_only("remember") is False

    async def test_remember_then_search(self, memory_manager: MemoryManager) -> None:
        registry = await make_registry(memory_manager)

        saved = await registry.execute(
            "remember",
            {"content": "Acme Corp pays net 45", "memory_type": "fact", "importance": 0.8},
        )
        found = await registry.execute("search_memory", {"query": "Acme Corp pays net 45"})

        assert saved.success is True
        assert found.success is True
        assert "Acme Corp pays net 45" in found.result
        assert found.data[0]["id"] == saved.data["id"]
        memory = await memory_manager.memory_store.get(saved.data["id"])
        assert memory.memory_type == MemoryType.FACT
        assert memory.importance == 0.8

    async def test_search_with_no_results(self, memory_manager: MemoryManager) -> None:
        registry = await make_registry(memory_manager)

        output = await registry.execute("search_memory", {"query": "unknown vendor"})

        assert output.success is True
        assert output.result == "No relevant memories found."
        assert output.data == []

    async def test_search_rejects_bad_limit(self, memory_manager: MemoryManager) -> None:
        registry = await make_registry(memory_manager)

        output = await registry.execute("search_memory", {"query": "x", "limit": 500})

        assert output.success is False
