"""Deterministic checks run in the validate stage of the reasoning loop.

None of these checks call the LLM. They look for:
- Journal entries whose debits and credits do not balance
- Documents whose line items do not add up to the stated total
- Answers that cite document numbers or amounts absent from the gathered evidence
"""

import json
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from ledger_agent.reasoning.models import ToolCallRecord

logger = structlog.get_logger(__name__)

# Tolerance for currency comparisons
AMOUNT_TOLERANCE = 0.01

# Prefixes of documents the ledger issues
DOCUMENT_PREFIXES = ("INV", "BILL", "PO", "SO", "QT", "JE", "CN", "DN", "EXP", "RCPT", "PAY")

# Document references such as INV-001, BILL-2024-0003, PO-17
DOCUMENT_REF_PATTERN = re.compile(r"\b(?:" + "|".join(DOCUMENT_PREFIXES) + r")-\d+(?:-\d+)*\b")

# Amounts with a currency marker: $1,250.00, €90, USD 15
CURRENCY_AMOUNT_PATTERN = re.compile(r"(?:[$€£]\s?|\b(?:USD|EUR|GBP)\s)(\d{1,3}(?:,\d{3})+|\d+)(\.\d{1,2})?")

# Any number in evidence text
NUMBER_PATTERN = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:\.\d+)?")

LINE_ITEM_KEYS = ("line_items", "items", "lines")
AMOUNT_KEYS = ("amount", "total", "line_total")


@dataclass
class ValidationResult:
    """Outcome of a validation pass."""

    issues: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").replace("$", "").strip())
        except ValueError:
            return None
    return None


def _walk_dicts(data: Any) -> Iterator[dict[str, Any]]:
    """Yield every dict nested anywhere inside ``data``."""
    if isinstance(data, dict):
        yield data
        for value in data.values():
            yield from _walk_dicts(value)
    elif isinstance(data, list):
        for item in data:
            yield from _walk_dicts(item)


def _close(a: float, b: float) -> bool:
    return abs(a - b) <= AMOUNT_TOLERANCE


def _line_amount(line: dict[str, Any]) -> float | None:
    for key in AMOUNT_KEYS:
        if key in line:
            return _to_float(line[key])
    quantity = _to_float(line.get("quantity"))
    unit_price = _to_float(line.get("unit_price"))
    if quantity is not None and unit_price is not None:
        return quantity * unit_price
    return None


class ResultValidator:
    """Deterministic, LLM-independent validation of tool data and answers."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="result_validator")

    def check_balance(self, data: Any) -> list[str]:
        """Debits must equal credits in every entry that carries both."""
        issues: list[str] = []
        for node in _walk_dicts(data):
            debits = _to_float(node.get("total_debits", node.get("debit_total")))
            credits = _to_float(node.get("total_credits", node.get("credit_total")))
            if debits is None or credits is None:
                lines = node.get("lines")
                if isinstance(lines, list) and lines and all(isinstance(line, dict) for line in lines):
                    if any("debit" in line or "credit" in line for line in lines):
                        debits = sum(_to_float(line.get("debit")) or 0.0 for line in lines)
                        credits = sum(_to_float(line.get("credit")) or 0.0 for line in lines)
            if debits is None or credits is None:
                continue
            if not _close(debits, credits):
                label = node.get("id") or node.get("number") or node.get("description") or "entry"
                issues.append(
                    f"Unbalanced entry {label}: debits {debits:.2f} != credits {credits:.2f}"
                )
        return issues

    def check_totals(self, data: Any) -> list[str]:
        """Line items must add up to the document's subtotal or total."""
        issues: list[str] = []
        for node in _walk_dicts(data):
            lines = next(
                (node[k] for k in LINE_ITEM_KEYS if isinstance(node.get(k), list)),
                None,
            )
            if not lines or not all(isinstance(line, dict) for line in lines):
                continue
            if any("debit" in line or "credit" in line for line in lines):
                continue

            amounts = [_line_amount(line) for line in lines]
            if any(a is None for a in amounts):
                continue
            line_sum = sum(a for a in amounts if a is not None)

            expected_key = "subtotal" if "subtotal" in node else "total"
            expected = _to_float(node.get(expected_key))
            if expected is None:
                continue
            if not _close(line_sum, expected):
                label = node.get("number") or node.get("id") or "document"
                issues.append(
                    f"Line items of {label} sum to {line_sum:.2f} but {expected_key} is {expected:.2f}"
                )
        return issues

    def validate_tool_outputs(self, records: Iterable[ToolCallRecord]) -> ValidationResult:
        """Check the data returned by successful tool calls."""
        result = ValidationResult()
        for record in records:
            if not record.success or record.data is None:
                continue
            for issue in self.check_balance(record.data) + self.check_totals(record.data):
                result.issues.append(f"{record.tool}: {issue}")

        if result.issues:
            self._logger.info("tool_output_validation_failed", issues=result.issues)
        return result

    def validate_answer(
        self,
        answer: str,
        records: Iterable[ToolCallRecord],
        context_texts: Iterable[str] = (),
    ) -> ValidationResult:
        """Check that an answer only cites documents and amounts found in evidence.

        Args:
            answer: Proposed answer text.
            records: Tool calls gathered so far.
            context_texts: Other grounding text (financial context, memories,
                conversation, the query itself).
        """
        records = list(records)
        evidence_parts = list(context_texts)
        tool_evidence = False
        for record in records:
            if not record.success:
                continue
            tool_evidence = True
            evidence_parts.append(record.output)
            if record.data is not None:
                evidence_parts.append(json.dumps(record.data, default=str))
        evidence = "\n".join(evidence_parts)

        result = ValidationResult()

        evidence_refs = set(DOCUMENT_REF_PATTERN.findall(evidence))
        for ref in dict.fromkeys(DOCUMENT_REF_PATTERN.findall(answer)):
            if ref not in evidence_refs:
                result.issues.append(f"{ref} is not present in any gathered data")

        # Amounts are only checked once tools have produced data to compare against
        if tool_evidence:
            known = self._evidence_amounts(evidence, records)
            for match in CURRENCY_AMOUNT_PATTERN.finditer(answer):
                value = float((match.group(1) + (match.group(2) or "")).replace(",", ""))
                if not any(_close(value, k) for k in known):
                    result.issues.append(f"Amount {match.group(0).strip()} does not match any gathered figure")

        if result.issues:
            self._logger.info("answer_validation_failed", issues=result.issues)
        return result

    def _evidence_amounts(self, evidence: str, records: list[ToolCallRecord]) -> list[float]:
        known = [float(n.replace(",", "")) for n in NUMBER_PATTERN.findall(evidence)]
        known.extend(abs(k) for k in list(known) if k < 0)

        # Totals the model may reasonably compute from a returned list
        for record in records:
            if not record.success:
                continue
            for node in _walk_dicts({"data": record.data}):
                for value in node.values():
                    if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
                        for key in AMOUNT_KEYS:
                            amounts = [_to_float(v.get(key)) for v in value]
                            present = [a for a in amounts if a is not None]
                            if present:
                                known.append(sum(present))
        return known
