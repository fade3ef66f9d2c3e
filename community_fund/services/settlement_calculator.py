"""Settlement quotes and commits for disbursed loans.

A quote is a pure function of (loan snapshot, settlement date): nothing is
cached between calls, so changing the date simply means quoting again.
Committing is a separate step that records a repayment and moves the loan
forward through the state machine.

Interest for the window [anchor, settlement date) is prorated on the approved
principal, where the anchor is the last interest payment date or, before the
first one, the disbursement date. A full settlement pays the outstanding
``remaining_balance`` plus that interest.
"""
from community_fund.config import DATE_FORMAT_STORAGE, InterestGuard
from community_fund.exceptions import (
    AlreadySettledError,
    InvalidInputError,
    InvalidTransitionError,
)
from community_fund.data_structures import SettlementQuote
from community_fund.logging import get_logger
from community_fund.models import LoanStatus, PaymentMethod, PaymentType
from community_fund.periods import as_datetime
from community_fund.services.interest_calculator import calculate_interest_between_dates
from community_fund.services.loan_state_machine import LoanStateMachine
from community_fund.services.repayment_allocator import RepaymentAllocator

logger = get_logger(__name__)

INTEREST_ONLY = "interest_only"
FULL = "full"


class SettlementCalculator:
    """Builds interest-only and full settlement quotes and commits them."""
    
    def __init__(self, state_machine=None, allocator=None,
                 interest_guard=InterestGuard.DATE_WINDOW):
        """Initialize SettlementCalculator.
        
        Args:
            state_machine: LoanStateMachine used for status changes.
            allocator: RepaymentAllocator used to record settlement payments.
            interest_guard: Policy for refusing a repeated interest-only commit.
        """
        self.state_machine = state_machine or LoanStateMachine()
        self.allocator = allocator or RepaymentAllocator()
        self.interest_guard = InterestGuard(interest_guard)

    def quote(self, loan, settlement_date, reference_now):
        """Quote both settlement options as of ``settlement_date``.
        
        Raises:
            InvalidTransitionError: If the loan is not disbursed.
            InvalidInputError: If the settlement date is after ``reference_now``
                or before the current interest anchor.
        """
        if loan.status != LoanStatus.DISBURSED or loan.interest_anchor is None:
            raise InvalidTransitionError(
                "settle", loan.status.value, loan.loan_id,
                reason="only disbursed loans can be settled",
            )
        settlement_date = as_datetime(settlement_date)
        if settlement_date > as_datetime(reference_now):
            raise InvalidInputError(
                "Settlement date cannot be in the future",
                {"settlement_date": settlement_date.isoformat()},
            )
        if settlement_date < loan.interest_anchor:
            raise InvalidInputError(
                "Settlement date cannot precede the start of the unpaid interest period",
                {"settlement_date": settlement_date.isoformat(),
                 "interest_anchor": loan.interest_anchor.isoformat()},
            )

        interest = calculate_interest_between_dates(
            loan.principal, loan.interest_rate, loan.interest_anchor, settlement_date
        )
        quote = SettlementQuote(
            loan_id=loan.loan_id,
            settlement_date=settlement_date,
            interest=interest,
            principal_amount=loan.remaining_balance,
        )
        logger.debug(
            "Settlement quote for loan %s at %s: interest=%s full=%s (%s days)",
            loan.loan_id, settlement_date.date(), quote.interest_only_amount,
            quote.full_settlement_amount, interest.days_elapsed,
        )
        return quote

    def _check_interest_guard(self, loan, quote):
        if (
            self.interest_guard == InterestGuard.CALENDAR_YEAR
            and loan.last_interest_paid_date is not None
            and loan.last_interest_paid_date.year == quote.settlement_date.year
        ):
            raise AlreadySettledError(
                loan.loan_id, loan.last_interest_paid_date,
                reason=f"Interest for {quote.settlement_date.year} has already been settled",
            )
        if quote.interest_only_amount <= 0:
            raise AlreadySettledError(
                loan.loan_id, loan.interest_anchor,
                reason="No interest is owed for this period",
            )

    def commit_interest_only(self, loan, settlement_date, reference_now, recorded_by=None):
        """Pay the interest owed to ``settlement_date``; the loan stays disbursed.
        
        Returns:
            Tuple of (updated loan, Repayment, SettlementQuote).
            
        Raises:
            AlreadySettledError: If the window is already covered.
        """
        quote = self.quote(loan, settlement_date, reference_now)
        self._check_interest_guard(loan, quote)

        interest = quote.interest
        notes = (
            f"Interest-only settlement from {interest.from_date.strftime(DATE_FORMAT_STORAGE)} "
            f"to {interest.to_date.strftime(DATE_FORMAT_STORAGE)} "
            f"({interest.months_elapsed} months)"
        )
        updated, repayment = self.allocator.record_repayment(
            loan,
            amount=quote.interest_only_amount,
            payment_type=PaymentType.INTEREST,
            principal_component=0,
            interest_component=quote.interest_only_amount,
            method=PaymentMethod.SETTLEMENT,
            payment_date=quote.settlement_date,
            notes=notes,
            recorded_by=recorded_by,
        )
        updated = self.state_machine.record_interest_paid(updated, quote.settlement_date)
        logger.info(
            "Interest-only settlement on loan %s: %s through %s",
            loan.loan_id, quote.interest_only_amount, quote.settlement_date.date(),
        )
        return updated, repayment, quote

    def commit_full(self, loan, settlement_date, reference_now, recorded_by=None):
        """Pay remaining principal plus interest and complete the loan.
        
        Returns:
            Tuple of (completed loan, Repayment or None, SettlementQuote). No
            repayment is recorded when nothing at all is owed.
        """
        quote = self.quote(loan, settlement_date, reference_now)
        repayment = None
        updated = loan

        if quote.full_settlement_amount > 0:
            interest = quote.interest
            notes = (
                "Full loan settlement with prorated interest from "
                f"{interest.from_date.strftime(DATE_FORMAT_STORAGE)} "
                f"to {interest.to_date.strftime(DATE_FORMAT_STORAGE)}"
            )
            updated, repayment = self.allocator.record_repayment(
                loan,
                amount=quote.full_settlement_amount,
                payment_type=PaymentType.COMBINED,
                principal_component=quote.principal_amount,
                interest_component=quote.interest_only_amount,
                method=PaymentMethod.SETTLEMENT,
                payment_date=quote.settlement_date,
                notes=notes,
                recorded_by=recorded_by,
            )
            updated = self.state_machine.record_interest_paid(updated, quote.settlement_date)

        updated = self.state_machine.complete(updated, quote.settlement_date)
        logger.info(
            "Full settlement on loan %s: %s (principal=%s interest=%s)",
            loan.loan_id, quote.full_settlement_amount,
            quote.principal_amount, quote.interest_only_amount,
        )
        return updated, repayment, quote

    def settle(self, loan, settlement_type, settlement_date, reference_now, recorded_by=None):
        """Dispatch to the interest-only or full commit."""
        if settlement_type == INTEREST_ONLY:
            return self.commit_interest_only(loan, settlement_date, reference_now, recorded_by)
        if settlement_type == FULL:
            return self.commit_full(loan, settlement_date, reference_now, recorded_by)
        raise InvalidInputError(
            "Settlement type must be interest_only or full",
            {"settlement_type": settlement_type},
        )
