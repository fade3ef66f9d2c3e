"""Tests for the monthly contribution lifecycle."""
import os
import sys
import unittest
from datetime import datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from community_fund.exceptions import InvalidInputError, InvalidTransitionError
from community_fund.models import Contribution, ContributionStatus, Member, PaymentMethod
from community_fund.services import ContributionService


class TestContributionService(unittest.TestCase):

    def setUp(self):
        self.service = ContributionService()
        self.members = [
            Member("M1", "Amina", datetime(2022, 9, 15)),
            Member("M2", "Baraka", datetime(2022, 9, 15)),
            Member("M3", "Chidi", datetime(2022, 9, 15), is_active=False),
        ]
        self.pending = Contribution("C1", "M1", "2024-03", 2024, Decimal("2000"))

    def test_monthly_setup_skips_inactive_and_existing(self):
        existing = [Contribution("C0", "M2", "2024-03", 2024, Decimal("2000"))]
        created = self.service.create_monthly_contributions(self.members, 2024, 3, existing)
        self.assertEqual([c.member_id for c in created], ["M1"])
        self.assertEqual(created[0].month, "2024-03")
        self.assertEqual(created[0].amount, Decimal("2000.00"))

    def test_monthly_setup_rejects_bad_month(self):
        with self.assertRaises(InvalidInputError):
            self.service.create_monthly_contributions(self.members, 2024, 13, [])

    def test_record_payment(self):
        paid = self.service.record_payment(
            self.pending, datetime(2024, 3, 20), payment_method=PaymentMethod.MOBILE_MONEY,
            recorded_by="admin",
        )
        self.assertEqual(paid.paid_status, ContributionStatus.PAID)
        self.assertEqual(paid.paid_date, datetime(2024, 3, 20))
        self.assertEqual(paid.payment_method, PaymentMethod.MOBILE_MONEY)
        with self.assertRaises(InvalidTransitionError):
            self.service.record_payment(paid, datetime(2024, 3, 21))

    def test_member_submission_awaits_approval(self):
        submitted = self.service.submit_member_contribution(self.pending, datetime(2024, 3, 5))
        self.assertEqual(submitted.paid_status, ContributionStatus.PENDING)
        self.assertIsNotNone(submitted.paid_date)

        approved = self.service.approve_contribution(submitted, "treasurer")
        self.assertEqual(approved.paid_status, ContributionStatus.PAID)
        self.assertEqual(approved.recorded_by, "treasurer")
        with self.assertRaises(InvalidTransitionError):
            self.service.approve_contribution(approved, "treasurer")

    def test_mark_overdue(self):
        submitted = self.service.submit_member_contribution(
            Contribution("C2", "M2", "2024-03", 2024, Decimal("2000")), datetime(2024, 3, 5)
        )
        current = Contribution("C3", "M1", "2024-04", 2024, Decimal("2000"))
        changed = self.service.mark_overdue(
            [self.pending, submitted, current], datetime(2024, 4, 10)
        )
        self.assertEqual([c.contribution_id for c in changed], ["C1"])
        self.assertEqual(changed[0].paid_status, ContributionStatus.OVERDUE)


if __name__ == '__main__':
    unittest.main()
