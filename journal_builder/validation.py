"""Double-entry validation for journal entries.

Every violation is collected so the caller sees the whole picture in one
JournalValidationError.
"""

from decimal import Decimal
from typing import List

from core.errors import JournalValidationError
from core.models.ledger import JournalEntryRecord


BALANCE_TOLERANCE = Decimal("0.01")
MIN_ACCOUNT_CODE_LENGTH = 6
ZERO = Decimal("0")


def validate_journal(journal: JournalEntryRecord) -> List[str]:
    """
    Check a journal entry against the double-entry rules.

    Args:
        journal: Journal entry to check

    Returns:
        List of violation messages (empty when valid)
    """
    violations: List[str] = []

    if not journal.journal_number:
        violations.append("Journal number is required")
    if not journal.date:
        violations.append("Journal date is required")
    if not journal.description or not journal.description.strip():
        violations.append("Journal description is required")

    if not journal.lines:
        violations.append("Journal entry has no lines")

    line_debits = sum((line.debit for line in journal.lines), ZERO)
    line_credits = sum((line.credit for line in journal.lines), ZERO)

    if abs(line_debits - line_credits) > BALANCE_TOLERANCE:
        violations.append(
            f"Journal entry is unbalanced: debits {line_debits} != credits {line_credits}"
        )
    if abs(journal.total_debit - line_debits) > BALANCE_TOLERANCE:
        violations.append(
            f"Total debit {journal.total_debit} does not match line debits {line_debits}"
        )
    if abs(journal.total_credit - line_credits) > BALANCE_TOLERANCE:
        violations.append(
            f"Total credit {journal.total_credit} does not match line credits {line_credits}"
        )

    for line in journal.lines:
        label = f"Line {line.line_number}"
        if not line.account_code or len(line.account_code) < MIN_ACCOUNT_CODE_LENGTH:
            violations.append(f"{label}: invalid account code {line.account_code!r}")
        if not line.account_name or not line.account_name.strip():
            violations.append(f"{label}: account name is required")
        if line.debit < ZERO or line.credit < ZERO:
            violations.append(f"{label}: amounts cannot be negative")
        if line.debit != ZERO and line.credit != ZERO:
            violations.append(f"{label}: cannot have both debit and credit")
        if line.debit == ZERO and line.credit == ZERO:
            violations.append(f"{label}: must have a debit or a credit")

    expected = list(range(1, len(journal.lines) + 1))
    if [line.line_number for line in journal.lines] != expected:
        violations.append("Line numbers must be sequential starting at 1")

    return violations


def ensure_valid(journal: JournalEntryRecord) -> None:
    """
    Raise if the journal entry violates any rule.

    Raises:
        JournalValidationError: With every violation found
    """
    violations = validate_journal(journal)
    if violations:
        raise JournalValidationError(violations, journal.journal_number)
