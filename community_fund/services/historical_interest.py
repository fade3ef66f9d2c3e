"""Historical interest ledger.

Interest the community collected before the loan ledger existed, or from
penalties and late fees, is entered by an admin as standalone records. These
records count toward the community's total interest collected alongside
repayment interest.
"""
import uuid
from dataclasses import replace
from datetime import datetime, time, timedelta
from decimal import Decimal

import pandas as pd
from dateutil.relativedelta import relativedelta

from community_fund.data_structures import HistoricalInterestSummary
from community_fund.exceptions import InvalidInputError
from community_fund.logging import get_logger
from community_fund.models import HistoricalInterest
from community_fund.periods import as_datetime
from community_fund.services.interest_calculator import round_currency

logger = get_logger(__name__)

ZERO = Decimal("0")

RECENT_RECORDS = 10

SOURCE_COLUMNS = ["source", "total_amount", "count"]
YEAR_COLUMNS = ["year", "total_amount", "count"]
MONTH_COLUMNS = ["month", "month_name", "amount", "count"]


def _decimal_sum(series):
    return sum(series, ZERO)


def _check_not_future(interest_date, reference_now):
    if interest_date > as_datetime(reference_now):
        raise InvalidInputError(
            "Interest date cannot be in the future",
            {"interest_date": interest_date.isoformat()},
        )


class HistoricalInterestLedger:
    """Builds, edits and summarizes HistoricalInterest records."""

    def __init__(self, id_factory=None):
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    @staticmethod
    def receipt_number(existing_count, reference_now):
        """``HI`` + timestamp + the 1-based record count, zero padded to three digits."""
        return f"HI{as_datetime(reference_now):%Y%m%d%H%M%S}{existing_count + 1:03d}"

    def record(self, command, existing_count, reference_now):
        """Create a new record from a validated RecordHistoricalInterest.

        Args:
            command: RecordHistoricalInterest command.
            existing_count: Number of records already stored.
            reference_now: Reference timestamp for the future-date check.

        Returns:
            HistoricalInterest record with a fresh receipt number.
        """
        command.validate()
        _check_not_future(command.interest_date, reference_now)
        record = HistoricalInterest(
            record_id=self._id_factory(),
            amount=round_currency(command.amount),
            interest_date=command.interest_date,
            source=command.source,
            description=command.description,
            recorded_by=command.recorded_by,
            receipt_number=self.receipt_number(existing_count, reference_now),
            member_id=command.member_id,
            loan_id=command.loan_id,
            borrower_name=command.borrower_name,
            notes=command.notes,
            created_at=as_datetime(reference_now),
        )
        logger.info(
            "Historical interest %s recorded: %s (%s) on %s",
            record.receipt_number, record.amount, record.source.value, record.interest_date.date(),
        )
        return record

    def update(self, record, command, reference_now):
        """Apply an UpdateHistoricalInterest to ``record`` under the same rules as creation."""
        command.validate()
        changes = command.changes()
        if "interest_date" in changes:
            _check_not_future(changes["interest_date"], reference_now)
        if "amount" in changes:
            changes["amount"] = round_currency(changes["amount"])
        return replace(record, **changes)

    @staticmethod
    def filter_window(year=None, month=None, start_date=None, end_date=None):
        """Turn list filters into a half-open ``[start, end)`` interest date window.

        ``year`` (optionally with ``month``) takes precedence over an explicit
        range. ``end_date`` includes its whole day. Either bound may be None.
        """
        if month is not None and year is None:
            raise InvalidInputError("A month filter requires a year", {"month": month})
        if year is not None:
            year = int(year)
            if month is None:
                start = datetime(year, 1, 1)
                return start, start + relativedelta(years=1)
            if not 1 <= int(month) <= 12:
                raise InvalidInputError("Month must be between 1 and 12", {"month": month})
            start = datetime(year, int(month), 1)
            return start, start + relativedelta(months=1)

        start = as_datetime(start_date) if start_date is not None else None
        end = None
        if end_date is not None:
            end = datetime.combine(as_datetime(end_date).date(), time()) + timedelta(days=1)
        if start is not None and end is not None and end <= start:
            raise InvalidInputError(
                "End date must not be before start date",
                {"start_date": start.isoformat(), "end_date": as_datetime(end_date).isoformat()},
            )
        return start, end

    def _frame(self, records):
        return pd.DataFrame(
            [{"source": r.source.value, "year": r.interest_date.year,
              "month": r.interest_date.month, "amount": r.amount}
             for r in records],
            columns=["source", "year", "month", "amount"],
        )

    def _grouped(self, df, key, columns):
        if df.empty:
            return pd.DataFrame(columns=columns)
        grouped = df.groupby(key)["amount"].agg(total_amount=_decimal_sum, count="size")
        return grouped.reset_index()[columns]

    def monthly_breakdown(self, records, year):
        """Amount and record count for each month of ``year``."""
        df = self._frame(records)
        df = df[df["year"] == year]
        rows = []
        for month in range(1, 13):
            in_month = df.loc[df["month"] == month, "amount"]
            rows.append({
                "month": month,
                "month_name": datetime(year, month, 1).strftime("%B"),
                "amount": _decimal_sum(in_month),
                "count": len(in_month),
            })
        return pd.DataFrame(rows, columns=MONTH_COLUMNS)

    def summarize(self, records, year=None):
        """Summarize the ledger.

        Args:
            records: All HistoricalInterest records.
            year: Optional calendar year for a twelve-month breakdown.

        Returns:
            HistoricalInterestSummary.
        """
        records = list(records)
        df = self._frame(records)
        total = _decimal_sum(df["amount"])
        count = len(records)

        by_source = self._grouped(df, "source", SOURCE_COLUMNS)
        if not by_source.empty:
            by_source = by_source.sort_values(
                "total_amount", ascending=False, kind="mergesort"
            ).reset_index(drop=True)

        recent = sorted(
            records,
            key=lambda r: (r.interest_date, r.created_at or datetime.min),
            reverse=True,
        )[:RECENT_RECORDS]

        summary = HistoricalInterestSummary(
            total_amount=total,
            record_count=count,
            average_amount=round_currency(total / count) if count else ZERO,
            by_source=by_source,
            yearly_totals=self._grouped(df, "year", YEAR_COLUMNS),
            recent_records=recent,
        )
        if year is not None:
            summary.year = int(year)
            summary.monthly_breakdown = self.monthly_breakdown(records, summary.year)
            summary.year_total = _decimal_sum(summary.monthly_breakdown["amount"])
        return summary
