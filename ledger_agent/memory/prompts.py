"""Prompts used by the memory manager for extraction and summarisation."""

FACT_EXTRACTION_PROMPT = """Extract key accounting facts from this conversation that would be useful to remember for future interactions. Focus on:
- Business information (company name, industry, fiscal year)
- Financial patterns (typical expenses, income sources, payment terms)
- User preferences (reporting style, level of detail, categories of interest)
- Important dates (tax deadlines, payment schedules, recurring events)
- Key relationships (main customers, important vendors)

Return a JSON array of objects with: {"fact": "...", "importance": 0.1-1.0}
Only include genuinely useful facts. Return an empty array [] if there are no notable facts.
Respond with the JSON array only."""

PREFERENCE_LEARNING_PROMPT = """Identify user preferences from this accounting conversation. Look for:
- preferred_date_format (e.g., "MM/DD/YYYY", "YYYY-MM-DD")
- preferred_currency (e.g., "USD", "EUR")
- reporting_frequency (e.g., "weekly", "monthly", "quarterly")
- detail_level (e.g., "summary", "detailed")
- expense_categories (commonly used or preferred categories)
- communication_style (e.g., "concise", "detailed", "technical")
- invoice_preferences (payment terms, notes style)
- favorite_reports (which reports they ask for most)

Return a JSON array: [{"key": "...", "value": "...", "confidence": 0.1-1.0}]
Only include preferences that are clearly indicated. Return [] if none are found.
Respond with the JSON array only."""

CONSOLIDATION_PROMPT = """The following notes about the same business were recorded at different times and say nearly the same thing.
Merge them into a single concise note that keeps every distinct detail (names, amounts, dates).
Respond with the merged note only.

Notes:
{notes}"""
