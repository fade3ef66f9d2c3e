"""Tests for command validation at the engine boundary."""
import os
import sys
import unittest
from datetime import date, datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from community_fund.commands import (
    ApproveLoan,
    CreateHistoricalContributions,
    CreateMonthlyContributions,
    DisburseLoan,
    RecordContributionPayment,
    RecordRepayment,
    RequestLoan,
    SettleLoan,
)
from community_fund.exceptions import InvalidInputError
from community_fund.models import PaymentMethod, PaymentType


class TestCommands(unittest.TestCase):

    def test_request_normalizes_amount(self):
        cmd = RequestLoan("M1", 1234.5, "  stock ").validate()
        self.assertEqual(cmd.requested_amount, Decimal("1234.5"))
        self.assertEqual(cmd.purpose, "stock")

    def test_request_rejects_non_positive(self):
        with self.assertRaises(InvalidInputError):
            RequestLoan("M1", -5).validate()

    def test_request_rejects_non_finite(self):
        for value in ("NaN", "Infinity", float("inf")):
            with self.subTest(value=value):
                with self.assertRaises(InvalidInputError):
                    RequestLoan("M1", value).validate()

    def test_approve_rejects_non_finite_rate(self):
        with self.assertRaises(InvalidInputError):
            ApproveLoan(interest_rate="Infinity").validate()

    def test_approve_optional_fields(self):
        cmd = ApproveLoan(interest_rate="14").validate()
        self.assertIsNone(cmd.approved_amount)
        self.assertEqual(cmd.interest_rate, Decimal("14"))

    def test_disburse_accepts_date(self):
        cmd = DisburseLoan(date(2024, 1, 1)).validate()
        self.assertEqual(cmd.disbursement_date, datetime(2024, 1, 1))

    def test_repayment_enums(self):
        cmd = RecordRepayment("100", "interest", payment_method="mobile_money").validate()
        self.assertEqual(cmd.payment_type, PaymentType.INTEREST)
        self.assertEqual(cmd.payment_method, PaymentMethod.MOBILE_MONEY)

    def test_repayment_unknown_type(self):
        with self.assertRaises(InvalidInputError):
            RecordRepayment(100, "tip").validate()

    def test_combined_needs_components(self):
        with self.assertRaises(InvalidInputError):
            RecordRepayment(100, PaymentType.COMBINED, principal_amount=60).validate()

    def test_settle_type(self):
        with self.assertRaises(InvalidInputError):
            SettleLoan("partial", datetime(2024, 1, 1)).validate()

    def test_historical_requires_months(self):
        with self.assertRaises(InvalidInputError):
            CreateHistoricalContributions("M1", [], 2000).validate()

    def test_monthly_month_range(self):
        with self.assertRaises(InvalidInputError):
            CreateMonthlyContributions(2024, 0).validate()
        with self.assertRaises(InvalidInputError):
            CreateMonthlyContributions(2024, 13).validate()

    def test_contribution_payment_requires_month(self):
        with self.assertRaises(InvalidInputError):
            RecordContributionPayment("M1", "").validate()


if __name__ == '__main__':
    unittest.main()
