"""Typed commands validated at the boundary before reaching the engine.

Each command corresponds to one mutating operation. ``validate()`` normalizes
amounts to Decimal and enum fields to their enum types, and raises
``InvalidInputError`` on malformed input.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from community_fund.exceptions import InvalidInputError
from community_fund.models import InterestSource, PaymentMethod, PaymentType
from community_fund.periods import as_datetime
from community_fund.services.interest_calculator import to_decimal


def _positive(value, field_name):
    amount = to_decimal(value, field_name)
    if amount <= 0:
        raise InvalidInputError(
            f"{field_name} must be positive", {field_name: str(amount)}
        )
    return amount


def _enum(enum_cls, value, field_name):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidInputError(
            f"{field_name} must be one of: {allowed}", {field_name: repr(value)}
        )


def _text(value, field_name, max_length, required=False):
    text = (value or "").strip()
    if required and not text:
        raise InvalidInputError(f"{field_name} is required")
    if len(text) > max_length:
        raise InvalidInputError(
            f"{field_name} cannot exceed {max_length} characters",
            {field_name: len(text)},
        )
    return text


@dataclass
class RequestLoan:
    member_id: str
    requested_amount: Decimal
    purpose: str = ""

    def validate(self):
        if not self.member_id:
            raise InvalidInputError("Member ID is required")
        self.requested_amount = _positive(self.requested_amount, "requested_amount")
        self.purpose = (self.purpose or "").strip()
        return self


@dataclass
class ApproveLoan:
    approved_amount: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    notes: str = ""
    approved_by: Optional[str] = None

    def validate(self):
        if self.approved_amount is not None:
            self.approved_amount = _positive(self.approved_amount, "approved_amount")
        if self.interest_rate is not None:
            self.interest_rate = to_decimal(self.interest_rate, "interest_rate")
        self.notes = (self.notes or "").strip()
        return self


@dataclass
class RejectLoan:
    reason: str = ""

    def validate(self):
        self.reason = (self.reason or "").strip()
        return self


@dataclass
class DisburseLoan:
    disbursement_date: datetime

    def validate(self):
        self.disbursement_date = as_datetime(self.disbursement_date)
        return self


@dataclass
class CorrectApprovalDate:
    approval_date: datetime

    def validate(self):
        if self.approval_date is None:
            raise InvalidInputError("Approval date is required")
        self.approval_date = as_datetime(self.approval_date)
        return self


@dataclass
class RecordRepayment:
    amount: Decimal
    payment_type: PaymentType
    principal_amount: Optional[Decimal] = None
    interest_amount: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: Optional[datetime] = None
    notes: str = ""
    receipt_number: Optional[str] = None
    recorded_by: Optional[str] = None

    def validate(self):
        self.amount = _positive(self.amount, "amount")
        self.payment_type = _enum(PaymentType, self.payment_type, "payment_type")
        self.payment_method = _enum(PaymentMethod, self.payment_method, "payment_method")
        if self.principal_amount is not None:
            self.principal_amount = to_decimal(self.principal_amount, "principal_amount")
        if self.interest_amount is not None:
            self.interest_amount = to_decimal(self.interest_amount, "interest_amount")
        if self.payment_type == PaymentType.COMBINED and (
            self.principal_amount is None or self.interest_amount is None
        ):
            raise InvalidInputError(
                "Principal and interest amounts must be specified for combined payments"
            )
        if self.payment_date is not None:
            self.payment_date = as_datetime(self.payment_date)
        self.notes = (self.notes or "").strip()
        return self


@dataclass
class SettleLoan:
    settlement_type: str  # "interest_only" or "full"
    settlement_date: datetime
    recorded_by: Optional[str] = None

    SETTLEMENT_TYPES = ("interest_only", "full")

    def validate(self):
        if self.settlement_type not in self.SETTLEMENT_TYPES:
            raise InvalidInputError(
                "Settlement type must be interest_only or full",
                {"settlement_type": self.settlement_type},
            )
        self.settlement_date = as_datetime(self.settlement_date)
        return self


@dataclass
class CreateHistoricalContributions:
    member_id: str
    months: List[str]
    amount: Decimal
    payment_method: Optional[PaymentMethod] = None
    mark_as_paid: bool = False
    notes: str = ""
    recorded_by: Optional[str] = None

    def validate(self):
        if not self.member_id or not self.months:
            raise InvalidInputError("Member ID and months are required")
        self.amount = _positive(self.amount, "amount")
        if self.payment_method is not None:
            self.payment_method = _enum(PaymentMethod, self.payment_method, "payment_method")
        self.notes = (self.notes or "").strip()
        return self


@dataclass
class CreateMonthlyContributions:
    year: int
    month: int
    member_ids: List[str] = field(default_factory=list)
    amount: Optional[Decimal] = None

    def validate(self):
        if not self.year or not self.month:
            raise InvalidInputError("Year and month are required")
        if not 1 <= int(self.month) <= 12:
            raise InvalidInputError("Month must be between 1 and 12", {"month": self.month})
        self.year, self.month = int(self.year), int(self.month)
        if self.amount is not None:
            self.amount = _positive(self.amount, "amount")
        return self


@dataclass
class RecordContributionPayment:
    member_id: str
    month: str
    amount: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: str = ""
    recorded_by: Optional[str] = None

    def validate(self):
        if not self.member_id or not self.month:
            raise InvalidInputError("Member ID and month are required")
        if self.amount is not None:
            self.amount = _positive(self.amount, "amount")
        self.payment_method = _enum(PaymentMethod, self.payment_method, "payment_method")
        self.notes = (self.notes or "").strip()
        return self


DESCRIPTION_MAX_LENGTH = 200
BORROWER_NAME_MAX_LENGTH = 100
NOTES_MAX_LENGTH = 500


@dataclass
class RecordHistoricalInterest:
    amount: Decimal
    interest_date: datetime
    description: str
    recorded_by: str
    source: InterestSource = InterestSource.OTHER
    member_id: Optional[str] = None
    loan_id: Optional[str] = None
    borrower_name: Optional[str] = None
    notes: str = ""

    def validate(self):
        if self.interest_date is None:
            raise InvalidInputError("Interest date is required")
        if not self.recorded_by:
            raise InvalidInputError("Recorded by is required")
        self.amount = _positive(self.amount, "amount")
        self.interest_date = as_datetime(self.interest_date)
        self.source = _enum(InterestSource, self.source, "source")
        self.description = _text(self.description, "description", DESCRIPTION_MAX_LENGTH, required=True)
        self.borrower_name = _text(self.borrower_name, "borrower_name", BORROWER_NAME_MAX_LENGTH) or None
        self.notes = _text(self.notes, "notes", NOTES_MAX_LENGTH)
        self.member_id = self.member_id or None
        self.loan_id = self.loan_id or None
        return self


@dataclass
class UpdateHistoricalInterest:
    """Fields left as None are unchanged; an empty string clears an optional field."""
    amount: Optional[Decimal] = None
    interest_date: Optional[datetime] = None
    description: Optional[str] = None
    source: Optional[InterestSource] = None
    member_id: Optional[str] = None
    loan_id: Optional[str] = None
    borrower_name: Optional[str] = None
    notes: Optional[str] = None

    def validate(self):
        if self.amount is not None:
            self.amount = _positive(self.amount, "amount")
        if self.interest_date is not None:
            self.interest_date = as_datetime(self.interest_date)
        if self.description is not None:
            self.description = _text(self.description, "description", DESCRIPTION_MAX_LENGTH, required=True)
        if self.source is not None:
            self.source = _enum(InterestSource, self.source, "source")
        if self.borrower_name is not None:
            self.borrower_name = _text(self.borrower_name, "borrower_name", BORROWER_NAME_MAX_LENGTH)
        if self.notes is not None:
            self.notes = _text(self.notes, "notes", NOTES_MAX_LENGTH)
        return self

    def changes(self):
        """Field values to apply, with cleared optional fields mapped to None."""
        changed = {}
        for name in ("amount", "interest_date", "description", "source", "notes"):
            value = getattr(self, name)
            if value is not None:
                changed[name] = value
        for name in ("member_id", "loan_id", "borrower_name"):
            value = getattr(self, name)
            if value is not None:
                changed[name] = value or None
        return changed
