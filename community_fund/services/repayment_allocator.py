"""Repayment allocation for the segregated principal/interest model.

Only the principal component of a payment reduces the remaining balance.
Interest components are recorded for reporting and never amortize principal.
"""
import uuid
from dataclasses import replace
from decimal import Decimal

import pandas as pd

from community_fund.exceptions import (
    AmountMismatchError,
    InvalidInputError,
    InvalidTransitionError,
    OverpaymentError,
)
from community_fund.logging import get_logger
from community_fund.models import LoanStatus, PaymentMethod, PaymentType, Repayment
from community_fund.periods import as_datetime
from community_fund.services.interest_calculator import round_currency

logger = get_logger(__name__)

ZERO = Decimal("0.00")

HISTORY_COLUMNS = [
    "repayment_id", "payment_date", "payment_type", "payment_method", "amount",
    "principal_amount", "interest_amount", "remaining_balance",
    "cumulative_principal", "cumulative_interest", "receipt_number", "notes",
]


class RepaymentAllocator:
    """Applies payments to a loan's principal and interest buckets."""
    
    def __init__(self, id_factory=None):
        """Initialize RepaymentAllocator.
        
        Args:
            id_factory: Optional callable returning new repayment IDs.
        """
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def split_payment(self, loan, amount, payment_type, principal_component=None,
                      interest_component=None):
        """Validate a payment and return its (principal, interest) split.
        
        Raises:
            InvalidInputError: If an amount is not positive or is negative.
            AmountMismatchError: If the components do not add up to the amount.
            OverpaymentError: If the principal exceeds the remaining balance.
        """
        amount = round_currency(amount)
        if amount <= 0:
            raise InvalidInputError("Payment amount must be positive", {"amount": str(amount)})
        payment_type = PaymentType(payment_type)

        principal = None if principal_component is None else round_currency(principal_component)
        interest = None if interest_component is None else round_currency(interest_component)

        if payment_type == PaymentType.PRINCIPAL:
            if principal is None:
                principal = amount
            if interest not in (None, ZERO) or principal != amount:
                raise AmountMismatchError(amount, principal, interest or ZERO)
            interest = ZERO
        elif payment_type == PaymentType.INTEREST:
            if interest is None:
                interest = amount
            if principal not in (None, ZERO) or interest != amount:
                raise AmountMismatchError(amount, principal or ZERO, interest)
            principal = ZERO
        else:
            if principal is None or interest is None:
                raise InvalidInputError(
                    "Principal and interest amounts must be specified for combined payments"
                )
            if principal < 0 or interest < 0:
                raise InvalidInputError(
                    "Payment components cannot be negative",
                    {"principal": str(principal), "interest": str(interest)},
                )
            if principal + interest != amount:
                raise AmountMismatchError(amount, principal, interest)

        if principal > loan.remaining_balance:
            raise OverpaymentError(principal, loan.remaining_balance, loan.loan_id)

        return principal, interest

    def record_repayment(self, loan, amount, payment_type, principal_component=None,
                         interest_component=None, method=PaymentMethod.CASH,
                         payment_date=None, notes="", receipt_number=None,
                         recorded_by=None):
        """Record a payment against an approved or disbursed loan.
        
        Args:
            loan: Loan snapshot.
            amount: Total cash received.
            payment_type: principal, interest or combined.
            principal_component: Principal share (required for combined).
            interest_component: Interest share (required for combined).
            method: Payment method.
            payment_date: Effective date of the payment.
            notes: Free-text notes.
            receipt_number: Optional receipt; generated when omitted.
            recorded_by: Admin reference.
            
        Returns:
            Tuple of (updated loan, new Repayment).
            
        Raises:
            InvalidTransitionError: If the loan does not accept payments.
            InvalidInputError: If the payment date is missing.
            AmountMismatchError: If components do not sum to the amount.
            OverpaymentError: If principal exceeds the remaining balance.
        """
        if loan.status not in (LoanStatus.APPROVED, LoanStatus.DISBURSED):
            raise InvalidTransitionError("record repayment", loan.status.value, loan.loan_id)
        if payment_date is None:
            raise InvalidInputError("Payment date is required")

        principal, interest = self.split_payment(
            loan, amount, payment_type, principal_component, interest_component
        )
        amount = round_currency(amount)
        new_balance = loan.remaining_balance - principal

        if receipt_number is None:
            receipt_number = f"RCPT-{loan.loan_id}-{len(loan.repayments) + 1:04d}"

        repayment = Repayment(
            repayment_id=self._id_factory(),
            loan_id=loan.loan_id,
            member_id=loan.member_id,
            amount=amount,
            payment_date=as_datetime(payment_date),
            payment_method=PaymentMethod(method),
            payment_type=PaymentType(payment_type),
            principal_amount=principal,
            interest_amount=interest,
            remaining_balance=new_balance,
            notes=notes or "",
            receipt_number=receipt_number,
            recorded_by=recorded_by,
        )

        updated = replace(
            loan,
            amount_paid=loan.amount_paid + amount,
            remaining_balance=new_balance,
            repayments=loan.repayments + (repayment,),
        )
        logger.info(
            "Repayment %s on loan %s: principal=%s interest=%s balance=%s",
            receipt_number, loan.loan_id, principal, interest, new_balance,
        )
        return updated, repayment


def repayment_history_frame(loan):
    """Payment history of a loan as a DataFrame, oldest first, with running totals."""
    if not loan.repayments:
        return pd.DataFrame(columns=HISTORY_COLUMNS)

    df = pd.DataFrame([
        {
            "repayment_id": r.repayment_id,
            "payment_date": r.payment_date,
            "payment_type": r.payment_type.value,
            "payment_method": r.payment_method.value,
            "amount": r.amount,
            "principal_amount": r.principal_amount,
            "interest_amount": r.interest_amount,
            "remaining_balance": r.remaining_balance,
            "receipt_number": r.receipt_number,
            "notes": r.notes,
        }
        for r in loan.repayments
    ])
    df = df.sort_values(by="payment_date", kind="stable").reset_index(drop=True)

    # Decimal columns are object dtype; accumulate explicitly to stay exact
    running_p, running_i = Decimal("0"), Decimal("0")
    cumulative_p, cumulative_i = [], []
    for p, i in zip(df["principal_amount"], df["interest_amount"]):
        running_p += p
        running_i += i
        cumulative_p.append(running_p)
        cumulative_i.append(running_i)
    df["cumulative_principal"] = cumulative_p
    df["cumulative_interest"] = cumulative_i
    return df[HISTORY_COLUMNS]
