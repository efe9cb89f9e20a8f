"""System prompt assembly for the accounting agent."""

from datetime import date

from ledger_agent.config import Settings, settings
from ledger_agent.memory.models import MemorySearchResult, MemoryType, UserPreference

BASE_PROMPT = """You are an expert AI accounting assistant for {business_name}. You have deep knowledge of:
- Double-entry bookkeeping and GAAP principles
- Accounts receivable and payable management
- Financial reporting (P&L, Balance Sheet, Cash Flow)
- Tax considerations and compliance
- Business financial metrics and KPIs

## How You Work
1. **Understand**: Carefully analyze what the user needs
2. **Plan**: Determine which tools and data you need
3. **Execute**: Call tools to gather information or perform actions
4. **Validate**: Verify your results make sense (debits = credits, amounts add up)
5. **Respond**: Provide clear, actionable answers with specific numbers

## Guidelines
- Always show your work when doing calculations
- Round currency to 2 decimal places and use {currency}
- Use proper accounting terminology
- Warn about potential issues (overdue invoices, cash flow concerns)
- Ask clarifying questions when the request is ambiguous
- For destructive actions (canceling invoices, deleting records), confirm before proceeding

## Business Context
- Today's date: {today}
- Business name: {business_name}
- Currency: {currency}
- Default tax rate: {tax_rate}%
- Fiscal year ends: Month {fiscal_year_end}"""

MEMORY_LABELS = {
    MemoryType.FACT: "Known fact",
    MemoryType.PREFERENCE: "User preference",
    MemoryType.CONVERSATION: "Previous context",
    MemoryType.TASK: "Open task",
}


def build_system_prompt(
    memories: list[MemorySearchResult] | None = None,
    financial_context: str = "",
    preferences: list[UserPreference] | None = None,
    tool_summary: str = "",
    today: date | None = None,
    config: Settings | None = None,
) -> str:
    """Assemble the system prompt from the business profile and recalled context.

    Sections with nothing to show are omitted.

    Args:
        memories: Recalled memories, in recall order.
        financial_context: Snapshot of the ledger.
        preferences: Learned and manual user preferences.
        tool_summary: Markdown list of available tools.
        today: Date shown to the model. Defaults to today.
        config: Settings holding the business profile.
    """
    cfg = config or settings
    sections = [
        BASE_PROMPT.format(
            business_name=cfg.BUSINESS_NAME,
            currency=cfg.CURRENCY,
            tax_rate=cfg.TAX_RATE,
            fiscal_year_end=cfg.FISCAL_YEAR_END,
            today=(today or date.today()).isoformat(),
        )
    ]

    if tool_summary:
        sections.append(tool_summary)

    if preferences:
        sections.append(
            "## User Preferences\n" + "\n".join(f"- {p.key}: {p.value}" for p in preferences)
        )

    if memories:
        sections.append(
            "## Relevant Context from Previous Conversations\n"
            + "\n".join(f"- [{MEMORY_LABELS[r.memory.memory_type]}] {r.memory.content}" for r in memories)
        )

    if financial_context:
        sections.append(f"## Current Financial Status\n{financial_context}")

    return "\n\n".join(sections)
