"""Tests for interest-only and full settlement."""
import os
import sys
import unittest
from datetime import datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from community_fund.config import InterestGuard
from community_fund.exceptions import (
    AlreadySettledError,
    InvalidInputError,
    InvalidTransitionError,
)
from community_fund.models import LoanStatus, PaymentMethod, PaymentType
from community_fund.services import LoanStateMachine, RepaymentAllocator, SettlementCalculator

NOW = datetime(2024, 12, 31)


def make_disbursed_loan():
    sm = LoanStateMachine()
    loan = sm.request("L1", "M1", 100000, datetime(2023, 12, 20))
    loan = sm.approve(loan, reference_now=datetime(2023, 12, 28))
    return sm.disburse(loan, datetime(2024, 1, 1), datetime(2024, 1, 1))


class TestSettlementQuote(unittest.TestCase):

    def setUp(self):
        self.calculator = SettlementCalculator()
        self.loan = make_disbursed_loan()

    def test_quote_from_disbursement(self):
        quote = self.calculator.quote(self.loan, datetime(2024, 7, 1), NOW)
        self.assertEqual(quote.interest_only_amount, Decimal("7978.08"))
        self.assertEqual(quote.principal_amount, Decimal("100000"))
        self.assertEqual(quote.full_settlement_amount, Decimal("107978.08"))
        self.assertEqual(quote.interest.from_date, datetime(2024, 1, 1))

    def test_quote_is_not_cached(self):
        first = self.calculator.quote(self.loan, datetime(2024, 7, 1), NOW)
        second = self.calculator.quote(self.loan, datetime(2024, 4, 1), NOW)
        self.assertLess(second.interest_only_amount, first.interest_only_amount)

    def test_future_settlement_date_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.calculator.quote(self.loan, datetime(2025, 2, 1), NOW)

    def test_settlement_before_interest_anchor_rejected(self):
        paid, _, _ = self.calculator.commit_interest_only(self.loan, datetime(2024, 7, 1), NOW)
        with self.assertRaises(InvalidInputError) as ctx:
            self.calculator.quote(paid, datetime(2024, 6, 1), NOW)
        self.assertIn("interest_anchor", str(ctx.exception))
        with self.assertRaises(InvalidInputError):
            self.calculator.commit_full(paid, datetime(2024, 6, 1), NOW)

    def test_settlement_before_disbursement_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.calculator.quote(self.loan, datetime(2023, 12, 31), NOW)

    def test_only_disbursed_loans(self):
        sm = LoanStateMachine()
        approved = sm.approve(sm.request("L2", "M1", 1000, datetime(2024, 1, 1)),
                              reference_now=datetime(2024, 1, 2))
        with self.assertRaises(InvalidTransitionError):
            self.calculator.quote(approved, datetime(2024, 2, 1), NOW)


class TestInterestOnlySettlement(unittest.TestCase):

    def setUp(self):
        self.calculator = SettlementCalculator()
        self.loan = make_disbursed_loan()

    def test_commit_records_interest_and_moves_anchor(self):
        loan, repayment, quote = self.calculator.commit_interest_only(
            self.loan, datetime(2024, 7, 1), NOW, recorded_by="admin"
        )
        self.assertEqual(loan.status, LoanStatus.DISBURSED)
        self.assertEqual(loan.last_interest_paid_date, datetime(2024, 7, 1))
        self.assertEqual(loan.remaining_balance, Decimal("100000"))
        self.assertEqual(repayment.payment_type, PaymentType.INTEREST)
        self.assertEqual(repayment.payment_method, PaymentMethod.SETTLEMENT)
        self.assertEqual(repayment.amount, Decimal("7978.08"))
        self.assertIn("2024-01-01", repayment.notes)

    def test_repeat_for_same_window_is_refused(self):
        loan, _, _ = self.calculator.commit_interest_only(self.loan, datetime(2024, 7, 1), NOW)
        again = self.calculator.quote(loan, datetime(2024, 7, 1), NOW)
        self.assertEqual(again.interest_only_amount, Decimal("0.00"))
        with self.assertRaises(AlreadySettledError):
            self.calculator.commit_interest_only(loan, datetime(2024, 7, 1), NOW)

    def test_date_window_allows_second_settlement_in_same_year(self):
        loan, _, _ = self.calculator.commit_interest_only(self.loan, datetime(2024, 7, 1), NOW)
        loan, repayment, _ = self.calculator.commit_interest_only(loan, datetime(2024, 10, 1), NOW)
        self.assertEqual(repayment.amount, Decimal("4032.88"))
        self.assertEqual(loan.interest_paid, Decimal("12010.96"))

    def test_calendar_year_guard(self):
        calculator = SettlementCalculator(interest_guard=InterestGuard.CALENDAR_YEAR)
        loan, _, _ = calculator.commit_interest_only(self.loan, datetime(2024, 7, 1), NOW)
        with self.assertRaises(AlreadySettledError):
            calculator.commit_interest_only(loan, datetime(2024, 10, 1), NOW)


class TestFullSettlement(unittest.TestCase):

    def setUp(self):
        self.calculator = SettlementCalculator()
        self.loan = make_disbursed_loan()

    def test_full_settlement_completes_loan(self):
        loan, repayment, quote = self.calculator.commit_full(self.loan, datetime(2024, 7, 1), NOW)
        self.assertEqual(loan.status, LoanStatus.COMPLETED)
        self.assertEqual(loan.remaining_balance, Decimal("0"))
        self.assertEqual(loan.actual_repayment_date, datetime(2024, 7, 1))
        self.assertEqual(repayment.payment_type, PaymentType.COMBINED)
        self.assertEqual(repayment.principal_amount, Decimal("100000.00"))
        self.assertEqual(repayment.interest_amount, Decimal("7978.08"))
        self.assertEqual(loan.amount_paid, Decimal("107978.08"))

    def test_full_after_partial_principal_uses_remaining_balance(self):
        partial, _ = RepaymentAllocator().record_repayment(
            self.loan, 40000, PaymentType.PRINCIPAL, payment_date=datetime(2024, 3, 1)
        )
        quote = self.calculator.quote(partial, datetime(2024, 7, 1), NOW)
        self.assertEqual(quote.principal_amount, Decimal("60000"))
        # interest accrues on the approved principal
        self.assertEqual(quote.interest_only_amount, Decimal("7978.08"))

    def test_full_right_after_interest_only(self):
        loan, _, _ = self.calculator.commit_interest_only(self.loan, datetime(2024, 7, 1), NOW)
        loan, repayment, quote = self.calculator.commit_full(loan, datetime(2024, 7, 1), NOW)
        self.assertEqual(quote.interest_only_amount, Decimal("0.00"))
        self.assertEqual(repayment.amount, Decimal("100000.00"))
        self.assertEqual(loan.status, LoanStatus.COMPLETED)

    def test_completed_loan_cannot_be_settled(self):
        loan, _, _ = self.calculator.commit_full(self.loan, datetime(2024, 7, 1), NOW)
        with self.assertRaises(InvalidTransitionError):
            self.calculator.settle(loan, "full", datetime(2024, 8, 1), NOW)

    def test_unknown_settlement_type(self):
        with self.assertRaises(InvalidInputError):
            self.calculator.settle(self.loan, "partial", datetime(2024, 7, 1), NOW)


if __name__ == '__main__':
    unittest.main()
