"""Domain records consumed and produced by the accrual services.

Records are immutable snapshots. Services never mutate a record in place;
they return a new record built with ``dataclasses.replace`` and leave
persistence to the caller.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from community_fund.config import DEFAULT_INTEREST_RATE


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CHECK = "check"
    SETTLEMENT = "settlement"


class PaymentType(str, Enum):
    PRINCIPAL = "principal"
    INTEREST = "interest"
    COMBINED = "combined"


class ContributionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class InterestSource(str, Enum):
    LOAN_REPAYMENT = "loan_repayment"
    PENALTY = "penalty"
    LATE_FEE = "late_fee"
    SETTLEMENT = "settlement"
    OTHER = "other"


@dataclass(frozen=True)
class Member:
    """Community member (borrower and contributor)."""
    member_id: str
    name: str
    join_date: datetime
    is_active: bool = True


@dataclass(frozen=True)
class Repayment:
    """Immutable payment applied to exactly one loan."""
    repayment_id: str
    loan_id: str
    member_id: str
    amount: Decimal
    payment_date: datetime
    payment_method: PaymentMethod
    payment_type: PaymentType
    principal_amount: Decimal
    interest_amount: Decimal
    remaining_balance: Decimal  # loan balance after this payment
    notes: str = ""
    receipt_number: Optional[str] = None
    recorded_by: Optional[str] = None


@dataclass(frozen=True)
class Loan:
    """Loan snapshot.
    
    ``total_amount_due`` is fixed at approval to the approved principal.
    Interest is settled separately and never added to the principal due, so
    ``remaining_balance == total_amount_due - principal_paid`` at all times.
    ``amount_paid`` is the cumulative cash received, interest included.
    """
    loan_id: str
    member_id: str
    requested_amount: Decimal
    request_date: datetime
    status: LoanStatus = LoanStatus.PENDING
    approved_amount: Optional[Decimal] = None
    interest_rate: Decimal = DEFAULT_INTEREST_RATE
    approval_date: Optional[datetime] = None
    approved_by: Optional[str] = None
    disbursement_date: Optional[datetime] = None
    actual_repayment_date: Optional[datetime] = None
    last_interest_paid_date: Optional[datetime] = None
    total_amount_due: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    remaining_balance: Decimal = Decimal("0")
    repayments: Tuple[Repayment, ...] = field(default_factory=tuple)
    purpose: str = ""
    notes: str = ""
    rejection_reason: Optional[str] = None
    version: int = 0

    @property
    def principal(self) -> Decimal:
        """Approved principal, falling back to the requested amount."""
        if self.approved_amount is not None:
            return self.approved_amount
        return self.requested_amount

    @property
    def principal_paid(self) -> Decimal:
        return sum((r.principal_amount for r in self.repayments), Decimal("0"))

    @property
    def interest_paid(self) -> Decimal:
        return sum((r.interest_amount for r in self.repayments), Decimal("0"))

    @property
    def interest_anchor(self) -> Optional[datetime]:
        """Start of the current unsettled interest window."""
        if self.last_interest_paid_date is not None:
            return self.last_interest_paid_date
        return self.disbursement_date

    @property
    def is_terminal(self) -> bool:
        return self.status in (LoanStatus.REJECTED, LoanStatus.COMPLETED)


@dataclass(frozen=True)
class Contribution:
    """Monthly contribution owed by a member. At most one per (member, month)."""
    contribution_id: str
    member_id: str
    month: str  # YYYY-MM
    year: int
    amount: Decimal
    paid_status: ContributionStatus = ContributionStatus.PENDING
    paid_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    recorded_by: Optional[str] = None
    notes: str = ""


@dataclass(frozen=True)
class HistoricalInterest:
    """Interest collected outside the repayment ledger, entered by an admin."""
    record_id: str
    amount: Decimal
    interest_date: datetime
    source: InterestSource
    description: str
    recorded_by: str
    receipt_number: str
    member_id: Optional[str] = None
    loan_id: Optional[str] = None
    borrower_name: Optional[str] = None
    notes: str = ""
    created_at: Optional[datetime] = None
