"""Balance recalculation from repayment history.

Stored loan totals are a cache of the repayment history. This service
rebuilds them and reports any drift between the two.
"""
from dataclasses import replace
from decimal import Decimal

from community_fund.logging import get_logger
from community_fund.models import LoanStatus

logger = get_logger(__name__)


class BalanceRecalculator:
    """Recomputes ``amount_paid`` and ``remaining_balance`` from repayments."""

    def expected_balances(self, loan):
        """Return (amount_paid, remaining_balance) implied by the repayments."""
        amount_paid = sum((r.amount for r in loan.repayments), Decimal("0"))
        if loan.status in (LoanStatus.PENDING, LoanStatus.REJECTED):
            return amount_paid, Decimal("0")
        return amount_paid, loan.total_amount_due - loan.principal_paid

    def find_discrepancies(self, loan):
        """List human-readable differences between stored and derived totals."""
        amount_paid, remaining = self.expected_balances(loan)
        issues = []
        if loan.amount_paid != amount_paid:
            issues.append(f"amount_paid is {loan.amount_paid}, repayments sum to {amount_paid}")
        if loan.remaining_balance != remaining:
            issues.append(f"remaining_balance is {loan.remaining_balance}, expected {remaining}")
        if remaining < 0:
            issues.append(f"principal repaid exceeds amount due by {-remaining}")
        return issues

    def recalculate(self, loan):
        """Return the loan with totals rebuilt from its repayment history."""
        issues = self.find_discrepancies(loan)
        if not issues:
            return loan
        for issue in issues:
            logger.warning("Loan %s: %s", loan.loan_id, issue)
        amount_paid, remaining = self.expected_balances(loan)
        return replace(loan, amount_paid=amount_paid, remaining_balance=max(remaining, Decimal("0")))
