"""Prompts used inside the reasoning loop."""

REASONING_PROMPT = """Think step by step about this request:

1. What is the user asking for?
2. What data do I need to answer this?
3. Which tools should I call to get that data?
4. What calculations or analysis is needed?
5. What's the best way to present the answer?

After each step, determine if you have enough information to answer, or if you need more data.
When you have enough information, reply with the answer and no tool calls.
Only cite invoice numbers, names and amounts that appear in tool results or the context you were given."""

DEFAULT_SYSTEM_PROMPT = """You are an expert AI accounting assistant. You help manage invoices, expenses, customers and financial reports, and you use the available tools to look up real data before answering."""

VALIDATION_FEEDBACK = """Automatic checks found problems with the information so far:
{issues}

Re-check the data with the available tools or correct your answer. Do not repeat figures that are not supported by tool results."""

ANSWER_PROMPT = """Using only the information gathered above, write the final answer to the user's request:

{query}"""

BUDGET_EXHAUSTED_NOTE = """You have reached the step limit. Answer with what you have and say briefly what could not be verified."""

CONFIRMATION_NOTE = """The following actions need the user's confirmation before they can run: {actions}.
Explain what you are about to do and ask the user to confirm."""

UNVERIFIED_NOTE = """Some figures could not be verified: {issues}"""
