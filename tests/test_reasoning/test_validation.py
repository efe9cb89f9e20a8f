"""Tests for deterministic result validation."""

import pytest

from ledger_agent.reasoning.models import ToolCallRecord
from ledger_agent.reasoning.validation import ResultValidator


def record(output: str = "", data=None, success: bool = True, tool: str = "get_invoice") -> ToolCallRecord:
    return ToolCallRecord(tool=tool, output=output, data=data, success=success)


@pytest.fixture
def validator() -> ResultValidator:
    return ResultValidator()


class TestCheckBalance:
    """Tests for debit/credit balance checks."""

    def test_balanced_lines(self, validator: ResultValidator) -> None:
        entry = {"id": "JE-1", "lines": [{"debit": 150.0}, {"credit": 100.0}, {"credit": 50.0}]}

        assert validator.check_balance(entry) == []

    def test_unbalanced_lines(self, validator: ResultValidator) -> None:
        entry = {"id": "JE-2", "lines": [{"debit": 150.0}, {"credit": 100.0}]}

        issues = validator.check_balance(entry)

        assert issues == ["Unbalanced entry JE-2: debits 150.00 != credits 100.00"]

    def test_explicit_totals(self, validator: ResultValidator) -> None:
        entry = {"number": "JE-3", "total_debits": "1,000.00", "total_credits": 999.5}

        assert len(validator.check_balance(entry)) == 1

    def test_nested_entries(self, validator: ResultValidator) -> None:
        data = {"entries": [
            {"id": "JE-4", "lines": [{"debit": 10}, {"credit": 10}]},
            {"id": "JE-5", "lines": [{"debit": 10}, {"credit": 12}]},
        ]}

        issues = validator.check_balance(data)

        assert len(issues) == 1
        assert "JE-5" in issues[0]

    def test_rounding_tolerance(self, validator: ResultValidator) -> None:
        entry = {"lines": [{"debit": 0.1}, {"debit": 0.2}, {"credit": 0.3}]}

        assert validator.check_balance(entry) == []


class TestCheckTotals:
    """Tests for line item totals."""

    def test_matching_total(self, validator: ResultValidator) -> None:
        invoice = {
            "number": "INV-001",
            "line_items": [{"quantity": 2, "unit_price": 50.0}, {"amount": 25.0}],
            "total": 125.0,
        }

        assert validator.check_totals(invoice) == []

    def test_mismatched_total(self, validator: ResultValidator) -> None:
        invoice = {"number": "INV-002", "line_items": [{"amount": 100.0}], "total": 110.0}

        assert validator.check_totals(invoice) == [
            "Line items of INV-002 sum to 100.00 but total is 110.00"
        ]

    def test_subtotal_preferred_over_total(self, validator: ResultValidator) -> None:
        invoice = {
            "number": "INV-003",
            "items": [{"amount": 100.0}],
            "subtotal": 100.0,
            "total": 108.0,
        }

        assert validator.check_totals(invoice) == []

    def test_lines_without_amounts_are_skipped(self, validator: ResultValidator) -> None:
        invoice = {"number": "INV-004", "line_items": [{"description": "Consulting"}], "total": 90.0}

        assert validator.check_totals(invoice) == []


class TestValidateToolOutputs:
    """Tests for validating tool records."""

    def test_issues_prefixed_with_tool(self, validator: ResultValidator) -> None:
        records = [record(data={"id": "JE-9", "lines": [{"debit": 5}, {"credit": 4}]}, tool="get_journal")]

        result = validator.validate_tool_outputs(records)

        assert not result.passed
        assert result.issues[0].startswith("get_journal: Unbalanced entry JE-9")

    def test_failed_records_ignored(self, validator: ResultValidator) -> None:
        records = [record(data={"lines": [{"debit": 5}, {"credit": 4}]}, success=False)]

        assert validator.validate_tool_outputs(records).passed


class TestValidateAnswer:
    """Tests for answer grounding."""

    def test_cited_document_from_tool(self, validator: ResultValidator) -> None:
        records = [record(output="Invoice INV-001: $1,250.00 due", data={"total": 1250.0})]

        result = validator.validate_answer("INV-001 has $1,250.00 outstanding.", records)

        assert result.passed

    def test_unknown_document_reference(self, validator: ResultValidator) -> None:
        result = validator.validate_answer("INV-404 is overdue.", [record(output="Invoice INV-001")])

        assert result.issues == ["INV-404 is not present in any gathered data"]

    @pytest.mark.parametrize("token", ["FY-2024", "ISO-8601", "UTF-8", "Q4-2024"])
    def test_non_document_tokens_ignored(self, validator: ResultValidator, token: str) -> None:
        result = validator.validate_answer(
            f"Your {token} figures are on track.", [record(output="Invoice INV-001 is paid")]
        )

        assert result.passed

    def test_other_document_prefixes_checked(self, validator: ResultValidator) -> None:
        result = validator.validate_answer("BILL-7 and PO-12 are open.", [record(output="BILL-7: .00")])

        assert result.issues == ["PO-12 is not present in any gathered data"]

    def test_reference_from_context_text(self, validator: ResultValidator) -> None:
        result = validator.validate_answer(
            "BILL-2024-0003 is due next week.", [], context_texts=["Open bills: BILL-2024-0003"]
        )

        assert result.passed

    def test_unsupported_amount(self, validator: ResultValidator) -> None:
        records = [record(output="Invoice INV-001: $1,250.00 due")]

        result = validator.validate_answer("INV-001 is $1,520.00.", records)

        assert result.issues == ["Amount $1,520.00 does not match any gathered figure"]

    def test_amounts_not_checked_without_tool_evidence(self, validator: ResultValidator) -> None:
        assert validator.validate_answer("A typical invoice is $500.", []).passed

    def test_computed_sum_accepted(self, validator: ResultValidator) -> None:
        records = [record(
            output="3 overdue invoices",
            data={"invoices": [{"number": "INV-1", "total": 100.0}, {"number": "INV-2", "total": 250.5}]},
        )]

        assert validator.validate_answer("You are owed $350.50 in total.", records).passed

    def test_negative_figure_matches_absolute_amount(self, validator: ResultValidator) -> None:
        records = [record(output="Net income: -420.00")]

        assert validator.validate_answer("You lost $420.00 this month.", records).passed
