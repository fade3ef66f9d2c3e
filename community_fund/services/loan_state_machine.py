"""Loan lifecycle state machine.

Legal transitions:

    pending   -> approved | rejected
    approved  -> disbursed
    disbursed -> completed

No transition ever returns a loan to an earlier state. Every method takes a
loan snapshot and returns a new snapshot; the input is never modified.
"""
from dataclasses import replace
from decimal import Decimal

from community_fund.config import DEFAULT_INTEREST_RATE, MAX_INTEREST_RATE
from community_fund.exceptions import InvalidInputError, InvalidTransitionError
from community_fund.logging import get_logger
from community_fund.models import Loan, LoanStatus
from community_fund.periods import as_datetime
from community_fund.services.interest_calculator import to_decimal

logger = get_logger(__name__)

TRANSITIONS = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.COMPLETED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.COMPLETED: frozenset(),
}


def can_transition(current, target):
    """Check whether ``current -> target`` is a legal transition."""
    return LoanStatus(target) in TRANSITIONS[LoanStatus(current)]


class LoanStateMachine:
    """Governs status transitions and the fields set at each one."""
    
    def __init__(self, default_interest_rate=DEFAULT_INTEREST_RATE):
        """Initialize LoanStateMachine.
        
        Args:
            default_interest_rate: Annual rate (percent) applied when approval
                does not specify one.
        """
        self.default_interest_rate = to_decimal(default_interest_rate, "interest_rate")

    def _require_transition(self, loan, target, action):
        if not can_transition(loan.status, target):
            raise InvalidTransitionError(action, loan.status.value, loan.loan_id)

    def request(self, loan_id, member_id, requested_amount, reference_now, purpose=""):
        """Create a pending loan request.
        
        Raises:
            InvalidInputError: If the requested amount is not positive.
        """
        amount = to_decimal(requested_amount, "requested_amount")
        if amount <= 0:
            raise InvalidInputError(
                "Requested amount must be positive", {"requested_amount": str(amount)}
            )
        return Loan(
            loan_id=loan_id,
            member_id=member_id,
            requested_amount=amount,
            request_date=as_datetime(reference_now),
            interest_rate=self.default_interest_rate,
            purpose=purpose,
        )

    def approve(self, loan, approved_amount=None, interest_rate=None, notes="",
                reference_now=None, approved_by=None):
        """Approve a pending loan.
        
        Args:
            loan: Loan snapshot in ``pending`` status.
            approved_amount: Principal granted; defaults to the requested amount.
            interest_rate: Annual rate in percent; defaults to the standard rate.
            notes: Approval notes.
            reference_now: Timestamp recorded as the approval date.
            approved_by: Admin reference.
            
        Returns:
            Approved loan with ``total_amount_due`` and ``remaining_balance``
            set to the approved principal.
            
        Raises:
            InvalidTransitionError: If the loan is not pending.
            InvalidInputError: If the amount or rate is out of range.
        """
        self._require_transition(loan, LoanStatus.APPROVED, "approve")
        if reference_now is None:
            raise InvalidInputError("Reference time is required for approval")

        amount = loan.requested_amount if approved_amount is None else to_decimal(approved_amount)
        if amount <= 0:
            raise InvalidInputError("Approved amount must be positive", {"approved_amount": str(amount)})
        if amount > loan.requested_amount:
            raise InvalidInputError(
                "Approved amount cannot exceed requested amount",
                {"approved_amount": str(amount), "requested_amount": str(loan.requested_amount)},
            )

        rate = self.default_interest_rate if interest_rate is None else to_decimal(interest_rate, "interest_rate")
        if rate < 0 or rate > MAX_INTEREST_RATE:
            raise InvalidInputError("Interest rate must be between 0 and 100", {"interest_rate": str(rate)})

        approved = replace(
            loan,
            status=LoanStatus.APPROVED,
            approved_amount=amount,
            interest_rate=rate,
            total_amount_due=amount,
            remaining_balance=amount - loan.principal_paid,
            approval_date=as_datetime(reference_now),
            approved_by=approved_by,
            notes=notes or "",
        )
        logger.info("Loan %s approved: amount=%s rate=%s%%", loan.loan_id, amount, rate)
        return approved

    def reject(self, loan, notes=""):
        """Reject a pending loan. Balances are left untouched."""
        self._require_transition(loan, LoanStatus.REJECTED, "reject")
        logger.info("Loan %s rejected", loan.loan_id)
        return replace(loan, status=LoanStatus.REJECTED, rejection_reason=notes or None)

    def disburse(self, loan, disbursement_date, reference_now=None):
        """Disburse an approved loan.
        
        The disbursement date anchors interest accrual until the first
        interest-only settlement.
        
        Raises:
            InvalidTransitionError: If the loan is not approved.
            InvalidInputError: If the date is in the future or before approval.
        """
        self._require_transition(loan, LoanStatus.DISBURSED, "disburse")
        disbursed_at = as_datetime(disbursement_date)
        if reference_now is not None and disbursed_at > as_datetime(reference_now):
            raise InvalidInputError(
                "Disbursement date cannot be in the future",
                {"disbursement_date": disbursed_at.isoformat()},
            )
        if loan.approval_date and disbursed_at.date() < loan.approval_date.date():
            raise InvalidInputError(
                "Disbursement date cannot precede approval date",
                {"disbursement_date": disbursed_at.isoformat(),
                 "approval_date": loan.approval_date.isoformat()},
            )
        logger.info("Loan %s disbursed on %s", loan.loan_id, disbursed_at.date())
        return replace(loan, status=LoanStatus.DISBURSED, disbursement_date=disbursed_at)

    def complete(self, loan, actual_repayment_date):
        """Close a disbursed loan whose principal has been fully repaid.
        
        Raises:
            InvalidTransitionError: If the loan is not disbursed or still has
                a remaining balance.
        """
        self._require_transition(loan, LoanStatus.COMPLETED, "complete")
        if loan.remaining_balance > 0:
            raise InvalidTransitionError(
                "complete", loan.status.value, loan.loan_id,
                reason=f"remaining balance is {loan.remaining_balance}",
            )
        logger.info("Loan %s completed", loan.loan_id)
        return replace(
            loan,
            status=LoanStatus.COMPLETED,
            remaining_balance=Decimal("0"),
            actual_repayment_date=as_datetime(actual_repayment_date),
        )

    def correct_approval_date(self, loan, approval_date, reference_now):
        """Override the approval date recorded at approval time.
        
        Only allowed while the loan is approved or disbursed, and never to a
        date in the future.
        """
        if loan.status not in (LoanStatus.APPROVED, LoanStatus.DISBURSED):
            raise InvalidTransitionError(
                "correct approval date", loan.status.value, loan.loan_id,
                reason="only approved or disbursed loans can be corrected",
            )
        corrected = as_datetime(approval_date)
        if corrected > as_datetime(reference_now):
            raise InvalidInputError(
                "Approval date cannot be in the future",
                {"approval_date": corrected.isoformat()},
            )
        if loan.disbursement_date and corrected.date() > loan.disbursement_date.date():
            raise InvalidInputError(
                "Approval date cannot follow disbursement date",
                {"approval_date": corrected.isoformat(),
                 "disbursement_date": loan.disbursement_date.isoformat()},
            )
        return replace(loan, approval_date=corrected)

    def record_interest_paid(self, loan, paid_through):
        """Move the interest anchor forward without changing status.
        
        Raises:
            InvalidTransitionError: If the loan is not disbursed.
            InvalidInputError: If the date would move the anchor backwards.
        """
        if loan.status != LoanStatus.DISBURSED:
            raise InvalidTransitionError(
                "record interest payment", loan.status.value, loan.loan_id
            )
        paid_through = as_datetime(paid_through)
        anchor = loan.interest_anchor
        if anchor is not None and paid_through < anchor:
            raise InvalidInputError(
                "Interest paid date cannot precede the current interest anchor",
                {"paid_through": paid_through.isoformat(), "anchor": anchor.isoformat()},
            )
        return replace(loan, last_interest_paid_date=paid_through)
