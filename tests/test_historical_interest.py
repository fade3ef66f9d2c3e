"""Tests for the historical interest ledger."""
import os
import sys
import unittest
from datetime import date, datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from community_fund.commands import RecordHistoricalInterest, UpdateHistoricalInterest
from community_fund.exceptions import InvalidInputError
from community_fund.models import InterestSource
from community_fund.services import HistoricalInterestLedger

NOW = datetime(2024, 7, 15, 10, 30, 5)


def command(amount="1500", interest_date=datetime(2023, 3, 10), source="penalty", **kwargs):
    kwargs.setdefault("description", "Late repayment penalty")
    kwargs.setdefault("recorded_by", "admin")
    return RecordHistoricalInterest(amount, interest_date, source=source, **kwargs)


class TestRecordCommand(unittest.TestCase):

    def test_normalizes_fields(self):
        cmd = command(amount=250.5, interest_date=date(2023, 3, 10), source="late_fee",
                      description="  fee ", borrower_name="  ", notes=" paid in cash ").validate()
        self.assertEqual(cmd.amount, Decimal("250.5"))
        self.assertEqual(cmd.interest_date, datetime(2023, 3, 10))
        self.assertEqual(cmd.source, InterestSource.LATE_FEE)
        self.assertEqual(cmd.description, "fee")
        self.assertIsNone(cmd.borrower_name)
        self.assertEqual(cmd.notes, "paid in cash")

    def test_amount_must_be_positive(self):
        for amount in (0, "-1", "NaN"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidInputError):
                    command(amount=amount).validate()

    def test_description_required_and_bounded(self):
        with self.assertRaises(InvalidInputError):
            command(description="   ").validate()
        with self.assertRaises(InvalidInputError):
            command(description="x" * 201).validate()
        self.assertEqual(len(command(description="x" * 200).validate().description), 200)

    def test_optional_text_limits(self):
        with self.assertRaises(InvalidInputError):
            command(borrower_name="b" * 101).validate()
        with self.assertRaises(InvalidInputError):
            command(notes="n" * 501).validate()

    def test_unknown_source(self):
        with self.assertRaises(InvalidInputError):
            command(source="donation").validate()

    def test_recorded_by_required(self):
        with self.assertRaises(InvalidInputError):
            command(recorded_by="").validate()


class TestLedger(unittest.TestCase):

    def setUp(self):
        self.ledger = HistoricalInterestLedger(id_factory=lambda: "H1")

    def test_record_assigns_receipt(self):
        record = self.ledger.record(command(member_id="M1"), 4, NOW)
        self.assertEqual(record.record_id, "H1")
        self.assertEqual(record.receipt_number, "HI20240715103005005")
        self.assertEqual(record.amount, Decimal("1500.00"))
        self.assertEqual(record.source, InterestSource.PENALTY)
        self.assertEqual(record.member_id, "M1")
        self.assertEqual(record.created_at, NOW)

    def test_future_date_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.ledger.record(command(interest_date=datetime(2024, 7, 16)), 0, NOW)

    def test_update_applies_same_rules(self):
        record = self.ledger.record(command(borrower_name="Amina"), 0, NOW)
        updated = self.ledger.update(
            record, UpdateHistoricalInterest(amount="99.999", borrower_name="", source="other"), NOW
        )
        self.assertEqual(updated.amount, Decimal("100.00"))
        self.assertIsNone(updated.borrower_name)
        self.assertEqual(updated.source, InterestSource.OTHER)
        self.assertEqual(updated.description, record.description)
        self.assertEqual(updated.receipt_number, record.receipt_number)

        with self.assertRaises(InvalidInputError):
            self.ledger.update(record, UpdateHistoricalInterest(interest_date=datetime(2025, 1, 1)), NOW)
        with self.assertRaises(InvalidInputError):
            self.ledger.update(record, UpdateHistoricalInterest(description=""), NOW)
        with self.assertRaises(InvalidInputError):
            self.ledger.update(record, UpdateHistoricalInterest(amount=0), NOW)


class TestFilterWindow(unittest.TestCase):

    def test_year_and_month(self):
        self.assertEqual(
            HistoricalInterestLedger.filter_window(2023, 12),
            (datetime(2023, 12, 1), datetime(2024, 1, 1)),
        )

    def test_year_only(self):
        self.assertEqual(
            HistoricalInterestLedger.filter_window(2023),
            (datetime(2023, 1, 1), datetime(2024, 1, 1)),
        )

    def test_date_range_includes_end_day(self):
        self.assertEqual(
            HistoricalInterestLedger.filter_window(start_date=date(2023, 2, 1), end_date=date(2023, 2, 28)),
            (datetime(2023, 2, 1), datetime(2023, 3, 1)),
        )
        self.assertEqual(HistoricalInterestLedger.filter_window(), (None, None))

    def test_bad_filters(self):
        with self.assertRaises(InvalidInputError):
            HistoricalInterestLedger.filter_window(month=3)
        with self.assertRaises(InvalidInputError):
            HistoricalInterestLedger.filter_window(2023, 13)
        with self.assertRaises(InvalidInputError):
            HistoricalInterestLedger.filter_window(start_date=date(2023, 3, 2), end_date=date(2023, 3, 1))


class TestSummary(unittest.TestCase):

    def setUp(self):
        ids = iter(f"H{i}" for i in range(1, 100))
        self.ledger = HistoricalInterestLedger(id_factory=lambda: next(ids))
        entries = [
            ("1000", datetime(2022, 11, 5), "loan_repayment"),
            ("300", datetime(2023, 1, 20), "penalty"),
            ("200", datetime(2023, 1, 25), "penalty"),
            ("3000", datetime(2023, 6, 1), "settlement"),
            ("50", datetime(2023, 6, 30), "late_fee"),
        ]
        self.records = [
            self.ledger.record(command(amount, when, source), i, NOW)
            for i, (amount, when, source) in enumerate(entries)
        ]

    def test_totals(self):
        summary = self.ledger.summarize(self.records)
        self.assertEqual(summary.total_amount, Decimal("4550.00"))
        self.assertEqual(summary.record_count, 5)
        self.assertEqual(summary.average_amount, Decimal("910.00"))
        self.assertIsNone(summary.monthly_breakdown)

    def test_by_source_largest_first(self):
        by_source = self.ledger.summarize(self.records).by_source
        self.assertEqual(
            list(by_source["source"]), ["settlement", "loan_repayment", "penalty", "late_fee"]
        )
        self.assertEqual(by_source["total_amount"].iloc[2], Decimal("500.00"))
        self.assertEqual(int(by_source["count"].iloc[2]), 2)

    def test_yearly_totals(self):
        yearly = self.ledger.summarize(self.records).yearly_totals
        self.assertEqual([int(y) for y in yearly["year"]], [2022, 2023])
        self.assertEqual(list(yearly["total_amount"]), [Decimal("1000.00"), Decimal("3550.00")])

    def test_monthly_breakdown_for_year(self):
        summary = self.ledger.summarize(self.records, year=2023)
        months = summary.monthly_breakdown
        self.assertEqual(len(months), 12)
        self.assertEqual(months["month_name"].iloc[0], "January")
        self.assertEqual(months["amount"].iloc[0], Decimal("500.00"))
        self.assertEqual(months["count"].iloc[0], 2)
        self.assertEqual(months["amount"].iloc[5], Decimal("3050.00"))
        self.assertEqual(months["amount"].iloc[1], Decimal("0"))
        self.assertEqual(summary.year_total, Decimal("3550.00"))

    def test_recent_records_newest_first(self):
        recent = self.ledger.summarize(self.records).recent_records
        self.assertEqual(recent[0].interest_date, datetime(2023, 6, 30))
        self.assertEqual(recent[-1].interest_date, datetime(2022, 11, 5))

    def test_empty_ledger(self):
        summary = self.ledger.summarize([], year=2024)
        self.assertEqual(summary.total_amount, Decimal("0"))
        self.assertEqual(summary.average_amount, Decimal("0"))
        self.assertTrue(summary.by_source.empty)
        self.assertTrue(summary.yearly_totals.empty)
        self.assertEqual(summary.year_total, Decimal("0"))
        self.assertEqual(summary.recent_records, [])


if __name__ == '__main__':
    unittest.main()
