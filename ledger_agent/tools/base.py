"""Base tool interface and registry for agent tools.

This module provides the abstract base class for all tools the reasoning
engine can call, a helper for defining tools from plain coroutines, and the
registry that exposes them to the model.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from ledger_agent.llm.base import ToolSchema
from ledger_agent.observability.tracing import traced_tool
from ledger_agent.orchestration.errors import ToolExecutionError

logger = structlog.get_logger(__name__)


class ToolCategory(str, Enum):
    """Functional area a tool belongs to."""

    CUSTOMER = "customer"
    VENDOR = "vendor"
    INVOICE = "invoice"
    EXPENSE = "expense"
    PAYMENT = "payment"
    REPORT = "report"
    JOURNAL = "journal"
    UTILITY = "utility"
    DOCUMENT = "document"


class ToolInput(BaseModel):
    """Base class for tool input validation."""

    model_config = ConfigDict(extra="forbid")


class ToolOutput(BaseModel):
    """Result of a tool execution.

    Attributes:
        success: Whether the tool did what was asked.
        result: Human/model-readable summary of the outcome.
        data: Structured payload for validation and follow-up steps.
        error: Error message when ``success`` is false.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = True
    result: str = ""
    data: Any = None
    error: str | None = None

    @classmethod
    def failure(cls, message: str, result: str | None = None) -> "ToolOutput":
        return cls(success=False, result=result or message, error=message)


InputT = TypeVar("InputT", bound=ToolInput)
OutputT = TypeVar("OutputT", bound=ToolOutput)


class BaseTool(ABC, Generic[InputT, OutputT]):
    """Abstract base class for all agent tools.

    Provides a consistent interface for tool execution with:
    - Input/output validation via Pydantic models
    - Execution tracing via Langfuse
    - Structured logging

    Type Parameters:
        InputT: Pydantic model for input validation
        OutputT: Pydantic model for output validation

    Example:
        class InvoiceLookupInput(ToolInput):
            invoice_number: str

        class InvoiceLookupTool(BaseTool[InvoiceLookupInput, ToolOutput]):
            name = "get_invoice"
            description = "Look up an invoice by number"
            category = ToolCategory.INVOICE

            input_schema = InvoiceLookupInput
            output_schema = ToolOutput

            async def _run(self, input_data: InvoiceLookupInput) -> ToolOutput:
                invoice = await ledger.find_invoice(input_data.invoice_number)
                return ToolOutput(result=f"Invoice {invoice.number}", data=invoice.to_dict())
    """

    #: Unique name for the tool
    name: str
    #: Human-readable description of what the tool does
    description: str
    #: Functional area, used to filter the tool list
    category: ToolCategory = ToolCategory.UTILITY
    #: Whether the user must confirm before the tool runs
    requires_confirmation: bool = False
    #: Whether the tool only reads data (safe to run concurrently)
    read_only: bool = True
    #: Hidden tools are callable but not advertised to the model
    hidden: bool = False

    input_schema: type[InputT]
    output_schema: type[OutputT]

    def __init__(self) -> None:
        self._logger = logger.bind(tool=self.name)

    @abstractmethod
    async def _run(self, input_data: InputT) -> OutputT:
        """Execute the tool.

        Args:
            input_data: Validated input data.

        Returns:
            Tool output.
        """
        ...

    def validate_input(self, input_data: dict[str, Any] | InputT) -> InputT:
        """Validate and parse input data.

        Raises:
            ToolExecutionError: If validation fails.
        """
        if isinstance(input_data, self.input_schema):
            return input_data

        try:
            return self.input_schema.model_validate(input_data)
        except ValidationError as e:
            raise ToolExecutionError(
                self.name,
                f"Input validation failed: {e}",
                cause=e,
            ) from e

    def _validate_output(self, output_data: OutputT) -> OutputT:
        try:
            return self.output_schema.model_validate(output_data.model_dump())
        except ValidationError as e:
            raise ToolExecutionError(
                self.name,
                f"Output validation failed: {e}",
                cause=e,
            ) from e

    @traced_tool("tool_execution")
    async def execute(self, input_data: dict[str, Any] | InputT) -> OutputT:
        """Execute the tool with input and output validation.

        Args:
            input_data: Raw input dict or validated input model.

        Returns:
            Validated tool output.

        Raises:
            ToolExecutionError: If validation or execution fails.
        """
        validated_input = self.validate_input(input_data)

        self._logger.info("tool_execute_start", input=validated_input.model_dump())

        try:
            output = await self._run(validated_input)
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(self.name, f"Execution failed: {e}", cause=e) from e

        validated_output = self._validate_output(output)
        self._logger.info("tool_execute_complete", success=validated_output.success)
        return validated_output

    def parameters_schema(self) -> dict[str, Any]:
        """JSON schema of the tool's parameters."""
        schema = self.input_schema.model_json_schema()
        # Title and description go in the tool definition itself
        schema.pop("title", None)
        schema.pop("description", None)
        return schema

    def to_schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema(),
        )

    def to_anthropic_tool(self) -> dict[str, Any]:
        """Convert tool to Anthropic tool format for LLM function calling.

        Returns:
            Tool definition in Anthropic's expected format.
        """
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters_schema(),
        }


ToolHandler = Callable[[Any], Awaitable[ToolOutput | str | dict[str, Any]]]


class FunctionTool(BaseTool[ToolInput, ToolOutput]):
    """Tool backed by a plain coroutine; built with :func:`define_tool`."""

    output_schema = ToolOutput

    def __init__(
        self,
        name: str,
        description: str,
        category: ToolCategory,
        input_schema: type[ToolInput],
        handler: ToolHandler,
        *,
        requires_confirmation: bool = False,
        read_only: bool = True,
        hidden: bool = False,
    ) -> None:
        self.name = name
        self.description = description
        self.category = category
        self.input_schema = input_schema
        self.requires_confirmation = requires_confirmation
        self.read_only = read_only
        self.hidden = hidden
        self._handler = handler
        super().__init__()

    async def _run(self, input_data: ToolInput) -> ToolOutput:
        value = await self._handler(input_data)
        if isinstance(value, ToolOutput):
            return value
        if isinstance(value, str):
            return ToolOutput(result=value)
        return ToolOutput(result=str(value), data=value)


def define_tool(
    name: str,
    description: str,
    category: ToolCategory,
    input_schema: type[ToolInput],
    handler: ToolHandler,
    *,
    requires_confirmation: bool = False,
    read_only: bool = True,
    hidden: bool = False,
) -> FunctionTool:
    """Create a tool from a coroutine taking the validated input model.

    Example:
        class BalanceInput(ToolInput):
            account: str

        async def get_balance(args: BalanceInput) -> ToolOutput:
            return ToolOutput(result="Cash: $1,200.00", data={"balance": 1200.0})

        tool = define_tool(
            "get_balance", "Current balance of an account",
            ToolCategory.REPORT, BalanceInput, get_balance,
        )
    """
    return FunctionTool(
        name,
        description,
        category,
        input_schema,
        handler,
        requires_confirmation=requires_confirmation,
        read_only=read_only,
        hidden=hidden,
    )


class ToolRegistry:
    """Registry for managing available tools.

    Provides a central place to register tools and execute them by name.
    ``execute`` never raises: failures come back as unsuccessful outputs.

    Example:
        registry = ToolRegistry()
        registry.register(InvoiceLookupTool())
        output = await registry.execute("get_invoice", {"invoice_number": "INV-001"})
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._tools: dict[str, BaseTool[Any, Any]] = {}
        self._logger = logger.bind(component="tool_registry")

    def register(self, tool: BaseTool[Any, Any]) -> None:
        """Register a tool in the registry.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        self._logger.debug("tool_registered", tool=tool.name, category=tool.category.value)

    def register_all(self, tools: list[BaseTool[Any, Any]]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> BaseTool[Any, Any]:
        """Get a tool by name.

        Raises:
            KeyError: If no tool with the given name is registered.
        """
        if name not in self._tools:
            raise KeyError(f"Tool '{name}' is not registered")
        return self._tools[name]

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self, categories: list[ToolCategory] | None = None) -> list[BaseTool[Any, Any]]:
        """List visible tools, optionally filtered by category."""
        tools = [t for t in self._tools.values() if not t.hidden]
        if categories:
            tools = [t for t in tools if t.category in categories]
        return tools

    def names(self) -> list[str]:
        return [t.name for t in self.list_tools()]

    def categories(self) -> list[ToolCategory]:
        """Categories that have at least one visible tool, sorted by name."""
        return sorted({t.category for t in self.list_tools()}, key=lambda c: c.value)

    def category_stats(self) -> dict[str, int]:
        stats: dict[str, int] = {}
        for tool in self.list_tools():
            stats[tool.category.value] = stats.get(tool.category.value, 0) + 1
        return stats

    def schemas(self, categories: list[ToolCategory] | None = None) -> list[ToolSchema]:
        """Model-facing schemas of the visible tools."""
        return [tool.to_schema() for tool in self.list_tools(categories)]

    def to_anthropic_tools(self, categories: list[ToolCategory] | None = None) -> list[dict[str, Any]]:
        """Convert visible tools to Anthropic format."""
        return [tool.to_anthropic_tool() for tool in self.list_tools(categories)]

    def requires_confirmation(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool.requires_confirmation if tool else False

    def is_read_only(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool.read_only if tool else False

    def confirmation_required_tools(self) -> list[BaseTool[Any, Any]]:
        return [t for t in self._tools.values() if t.requires_confirmation]

    async def execute(self, name: str, args: dict[str, Any]) -> ToolOutput:
        """Execute a tool by name.

        Unknown tools, invalid arguments and exceptions raised by the tool
        all produce an unsuccessful output instead of an exception.
        """
        tool = self._tools.get(name)
        if tool is None:
            return ToolOutput.failure(
                f'Tool "{name}" not found in registry',
                result=f"Unknown tool: {name}",
            )

        self._logger.debug("executing_tool", tool=name, args=list(args))
        started = time.perf_counter()
        try:
            output = await tool.execute(args)
        except ToolExecutionError as e:
            self._logger.error("tool_execution_failed", tool=name, error=e.message)
            return ToolOutput.failure(e.message, result=f"Error executing {name}: {e.message}")

        self._logger.debug(
            "tool_executed",
            tool=name,
            success=output.success,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return output

    def generate_tool_summary(self) -> str:
        """Markdown summary of the visible tools, grouped by category."""
        lines = ["## Available Tools"]
        for category in self.categories():
            tools = self.list_tools([category])
            if tools:
                lines.append(f"\n### {category.value.capitalize()}")
                for tool in tools:
                    lines.append(f"- **{tool.name}**: {tool.description}")
        return "\n".join(lines)
