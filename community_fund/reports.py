"""Community finances summary built from loan, contribution and historical interest records."""
from decimal import Decimal

import pandas as pd
from dateutil.relativedelta import relativedelta

from community_fund.config import FINANCE_HISTORY_MONTHS
from community_fund.data_structures import CommunityFinances, LoanSummary
from community_fund.models import ContributionStatus, LoanStatus
from community_fund.periods import month_key, month_start
from community_fund.services.interest_calculator import round_currency

ZERO = Decimal("0")

LIVE_STATUSES = (LoanStatus.APPROVED, LoanStatus.DISBURSED)
FUNDED_STATUSES = (LoanStatus.APPROVED, LoanStatus.DISBURSED, LoanStatus.COMPLETED)

HISTORY_COLUMNS = ["month", "label", "contributions", "loans_given", "interest_collected", "net_growth"]


def _decimal_sum(series):
    return sum(series, ZERO)


class CommunityFinanceReport:
    """Aggregates community-wide totals and a rolling monthly history."""

    def __init__(self, history_months=FINANCE_HISTORY_MONTHS):
        self.history_months = history_months

    def _contributions_frame(self, contributions):
        return pd.DataFrame(
            [{"month": c.month, "amount": c.amount, "status": c.paid_status.value}
             for c in contributions],
            columns=["month", "amount", "status"],
        )

    def _loans_given_frame(self, loans):
        rows = []
        for loan in loans:
            if loan.status not in FUNDED_STATUSES or not loan.approved_amount:
                continue
            given_on = loan.disbursement_date or loan.approval_date
            if given_on is None:
                continue
            rows.append({"month": month_key(given_on), "amount": loan.approved_amount})
        return pd.DataFrame(rows, columns=["month", "amount"])

    def _interest_frame(self, loans, historical_interest=()):
        rows = [
            {"month": month_key(r.payment_date), "amount": r.interest_amount}
            for loan in loans
            for r in loan.repayments
        ]
        rows.extend(
            {"month": month_key(h.interest_date), "amount": h.amount}
            for h in historical_interest
        )
        return pd.DataFrame(rows, columns=["month", "amount"])

    def monthly_history(self, loans, contributions, reference_now, historical_interest=()):
        """Contributions, loans given and interest per month, oldest first.
        
        The window ends with the reference month. Interest combines repayment
        interest with historical interest in the month of its interest date.
        """
        contrib_df = self._contributions_frame(contributions)
        paid_df = contrib_df[contrib_df["status"] == ContributionStatus.PAID.value]
        loans_df = self._loans_given_frame(loans)
        interest_df = self._interest_frame(loans, historical_interest)

        def month_total(df, key):
            return _decimal_sum(df.loc[df["month"] == key, "amount"])

        current = month_start(reference_now)
        rows = []
        for offset in range(self.history_months - 1, -1, -1):
            start = current - relativedelta(months=offset)
            key = month_key(start)
            contributed = month_total(paid_df, key)
            given = month_total(loans_df, key)
            interest = month_total(interest_df, key)
            rows.append({
                "month": key,
                "label": start.strftime("%B %Y"),
                "contributions": contributed,
                "loans_given": given,
                "interest_collected": interest,
                "net_growth": contributed + interest - given,
            })
        return pd.DataFrame(rows, columns=HISTORY_COLUMNS)

    def summarize(self, loans, contributions, reference_now, historical_interest=()):
        """Build the community finances summary.
        
        Args:
            loans: All Loan records.
            contributions: All Contribution records.
            historical_interest: All HistoricalInterest records.
            reference_now: End of the monthly history window.
            
        Returns:
            CommunityFinances.
        """
        loans = list(loans)
        contributions = list(contributions)
        historical_interest = list(historical_interest)

        contrib_df = self._contributions_frame(contributions)
        total_contributions = _decimal_sum(
            contrib_df.loc[contrib_df["status"] == ContributionStatus.PAID.value, "amount"]
        )

        active = [loan for loan in loans if loan.status in LIVE_STATUSES and loan.remaining_balance > 0]
        total_active = sum((loan.principal for loan in active), ZERO)
        historical_total = sum((h.amount for h in historical_interest), ZERO)
        interest_collected = sum((loan.interest_paid for loan in loans), ZERO) + historical_total

        expected_annual = ZERO
        summaries = []
        for loan in loans:
            if loan.status not in FUNDED_STATUSES or not loan.approved_amount:
                continue
            yearly = round_currency(loan.approved_amount * loan.interest_rate / Decimal("100"))
            if loan.status in LIVE_STATUSES:
                expected_annual += yearly
            summaries.append(LoanSummary(
                loan_id=loan.loan_id,
                member_id=loan.member_id,
                principal_amount=loan.approved_amount,
                interest_rate=loan.interest_rate,
                yearly_interest_amount=yearly,
                total_interest_earned=loan.interest_paid,
                remaining_balance=loan.remaining_balance,
                loan_start_date=loan.approval_date or loan.request_date,
                status=loan.status.value,
            ))

        return CommunityFinances(
            total_contributions=total_contributions,
            total_active_loans=total_active,
            total_interest_collected=interest_collected,
            available_liquid_funds=total_contributions + interest_collected - total_active,
            expected_annual_interest=expected_annual,
            loan_summaries=summaries,
            monthly_history=self.monthly_history(
                loans, contributions, reference_now, historical_interest
            ),
            historical_interest_collected=historical_total,
        )
