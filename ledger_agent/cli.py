"""Command-line interface for the accounting agent.

Commands:
    ledger-agent ask "Which invoices are overdue?" [--stream] [--json] [--session ID]
    ledger-agent memory stats
    ledger-agent memory recall "payment terms" [--limit 5]
    ledger-agent memory forget
    ledger-agent memory consolidate
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import structlog

from ledger_agent.agents.context import AppContext, StaticFinancialContext, create_app_context
from ledger_agent.agents.runner import AgentResponse, AgentRunner
from ledger_agent.config import Settings, settings
from ledger_agent.observability.tracing import TraceContext, flush_traces, get_langfuse_client
from ledger_agent.orchestration.errors import LedgerAgentError
from ledger_agent.reasoning.models import ReasoningStep

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog to render key-value lines to stderr at ``level``."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _print_step(step: ReasoningStep) -> None:
    marker = "✓" if step.success else "✗"
    print(f"[{step.iteration}] {step.stage.value:<10} {marker} {step.description}")


def _print_response(response: AgentResponse, as_json: bool) -> None:
    if as_json:
        print(response.model_dump_json(indent=2, exclude={"memories"}))
        return

    print(response.answer)
    print()
    print(
        f"status={response.status} confidence={response.confidence:.2f} "
        f"iterations={response.iterations} tools={', '.join(response.tools_used) or '-'}"
    )
    for warning in response.warnings:
        print(f"warning: {warning}")
    for call in response.pending_confirmations:
        print(f"awaiting confirmation: {call.name} {json.dumps(call.arguments, default=str)}")


async def _build_context(config: Settings, args: argparse.Namespace) -> AppContext:
    financial_context = None
    context_file = getattr(args, "context_file", None)
    if context_file:
        financial_context = StaticFinancialContext(Path(context_file).read_text())
    return await create_app_context(config, financial_context=financial_context)


async def ask_command(args: argparse.Namespace, config: Settings) -> int:
    """Execute the 'ask' command."""
    ctx = await _build_context(config, args)
    runner = AgentRunner(ctx)
    try:
        async with TraceContext(session_id=args.session, tags=["cli", "ask"]):
            if args.stream:
                stream = runner.run_stream(args.query)
                async for step in stream:
                    _print_step(step)
                print()
                response = stream.result
            else:
                response = await runner.run(args.query)

        _print_response(response, args.json)
        await runner.drain()
        return 1 if response.status == "error" else 0
    finally:
        await ctx.close()


async def memory_command(args: argparse.Namespace, config: Settings) -> int:
    """Execute a 'memory' subcommand."""
    ctx = await _build_context(config, args)
    memory = ctx.memory
    try:
        if args.memory_command == "stats":
            stats = await memory.get_stats()
            print(json.dumps(stats.to_dict(), indent=2, default=str))
        elif args.memory_command == "recall":
            results = await memory.recall(args.query, limit=args.limit)
            if not results:
                print("No relevant memories found.")
            for result in results:
                print(f"{result.score:.3f}  [{result.memory.memory_type.value}] {result.memory.content}")
        elif args.memory_command == "forget":
            print(f"Forgot {await memory.forget()} memories")
        elif args.memory_command == "consolidate":
            print(f"Consolidated {await memory.consolidate()} memories")
        else:
            return 1
        return 0
    except LedgerAgentError as e:
        logger.error("memory_command_failed", command=args.memory_command, **e.to_dict())
        return 1
    finally:
        await ctx.close()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-agent",
        description="AI accounting agent with semantic memory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (defaults to LOG_LEVEL)",
    )
    parser.add_argument(
        "--db",
        help="Memory database path (defaults to MEMORY_DB_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ask_parser = subparsers.add_parser("ask", help="Ask the agent a question")
    ask_parser.add_argument("query", help="Question or instruction")
    ask_parser.add_argument(
        "--stream",
        action="store_true",
        help="Print reasoning steps as they happen",
    )
    ask_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full response as JSON",
    )
    ask_parser.add_argument(
        "--context-file",
        help="Text file with the current financial snapshot",
    )
    ask_parser.add_argument(
        "--session",
        help="Conversation id used to group traces",
    )

    memory_parser = subparsers.add_parser("memory", help="Inspect and maintain memory")
    memory_sub = memory_parser.add_subparsers(dest="memory_command", help="Memory commands")
    memory_sub.add_parser("stats", help="Show memory statistics")
    recall_parser = memory_sub.add_parser("recall", help="Search memories")
    recall_parser.add_argument("query", help="Text to search for")
    recall_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum results (defaults to RECALL_LIMIT)",
    )
    memory_sub.add_parser("forget", help="Delete old, unimportant memories")
    memory_sub.add_parser("consolidate", help="Merge near-duplicate memories")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI.

    Returns:
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command or (args.command == "memory" and not args.memory_command):
        parser.print_help()
        return 1

    config = replace(settings, MEMORY_DB_PATH=args.db) if args.db else settings
    configure_logging(args.log_level or config.LOG_LEVEL)
    get_langfuse_client()

    try:
        if args.command == "ask":
            return asyncio.run(ask_command(args, config))
        elif args.command == "memory":
            return asyncio.run(memory_command(args, config))
    finally:
        flush_traces()

    return 1


if __name__ == "__main__":
    sys.exit(main())
