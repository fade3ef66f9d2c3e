"""Historical contribution planning for members.

Every member owes one contribution per calendar month from the later of the
community opening month and their join month, up to and including the last
completed month before the reference time. The current month is never owed.
"""
import uuid

from community_fund.config import CommunityConfig
from community_fund.data_structures import (
    ContributionMonth,
    ContributionPlan,
    HistoricalCreationResult,
)
from community_fund.exceptions import InvalidInputError
from community_fund.logging import get_logger
from community_fund.models import Contribution, ContributionStatus, PaymentMethod
from community_fund.periods import (
    as_datetime,
    is_month_key,
    iter_months,
    last_completed_month,
    month_key,
    month_start,
)
from community_fund.services.interest_calculator import round_currency

logger = get_logger(__name__)


def index_by_month(member_id, contributions):
    """Map month key to the member's contribution for that month.
    
    Raises:
        InvalidInputError: If the member has two records for the same month.
    """
    by_month = {}
    for c in contributions:
        if c.member_id != member_id:
            continue
        if c.month in by_month:
            raise InvalidInputError(
                f"Duplicate contribution for month {c.month}",
                {"member_id": member_id, "month": c.month},
            )
        by_month[c.month] = c
    return by_month


class HistoricalContributionPlanner:
    """Partitions a member's required months into paid/pending/overdue/missing."""
    
    def __init__(self, config=None, id_factory=None):
        """Initialize HistoricalContributionPlanner.
        
        Args:
            config: CommunityConfig with the opening date and default amount.
            id_factory: Optional callable returning new contribution IDs.
        """
        self.config = config or CommunityConfig()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def required_start(self, member):
        """First owed month: the later of community opening and member join."""
        opening = month_start(self.config.opening_date)
        joined = month_start(member.join_date)
        return max(opening, joined)

    def required_month_keys(self, member, reference_now):
        start = self.required_start(member)
        end = last_completed_month(reference_now)
        return [month_key(m) for m in iter_months(start, end)]

    def plan(self, member, contributions, reference_now):
        """Compute the member's contribution status as of ``reference_now``.
        
        Read-only: calling this twice with the same records yields the same
        plan.
        
        Args:
            member: Member record.
            contributions: The member's existing Contribution records.
            reference_now: Reference timestamp; its month is excluded.
            
        Returns:
            ContributionPlan.
        """
        default_amount = self.config.default_contribution_amount
        existing = index_by_month(member.member_id, contributions)
        plan = ContributionPlan(member_id=member.member_id, reference_now=as_datetime(reference_now))

        for start in iter_months(self.required_start(member), last_completed_month(reference_now)):
            key = month_key(start)
            record = existing.get(key)
            entry = ContributionMonth(
                month=key,
                year=start.year,
                label=start.strftime("%B %Y"),
                required_amount=record.amount if record else default_amount,
                contribution=record,
            )
            plan.required_months.append(entry)
            plan.total_required += entry.required_amount

            if record is None:
                plan.missing_months.append(entry)
                plan.total_missing += entry.required_amount
            elif record.paid_status == ContributionStatus.PAID:
                plan.paid_months.append(entry)
                plan.total_paid += record.amount
            elif record.paid_status == ContributionStatus.OVERDUE:
                plan.overdue_months.append(entry)
                plan.total_overdue += record.amount
            else:
                plan.pending_months.append(entry)
                plan.total_pending += record.amount

        logger.debug(
            "Contribution plan for %s: %d required, %d missing",
            member.member_id, plan.required_months_count, plan.missing_months_count,
        )
        return plan

    def create_missing_contributions(self, member, months, amount, contributions,
                                     reference_now, payment_method=None,
                                     mark_as_paid=False, notes="", recorded_by=None):
        """Create one contribution per selected month that has no record yet.
        
        Months that already have a record are skipped, not treated as errors,
        so re-running the same selection creates nothing new. Malformed keys
        and months outside the member's required window are reported in
        ``errors``.
        
        Args:
            member: Member record.
            months: Selected ``YYYY-MM`` keys.
            amount: Contribution amount per month.
            contributions: The member's existing Contribution records.
            reference_now: Reference timestamp (also the paid date when
                ``mark_as_paid`` is set).
            payment_method: Payment method recorded for paid months.
            mark_as_paid: Create as paid instead of pending.
            notes: Notes copied to each record.
            recorded_by: Admin reference for paid months.
            
        Returns:
            HistoricalCreationResult with created, skipped and errors.
        """
        amount = round_currency(amount)
        if amount <= 0:
            raise InvalidInputError("Valid amount is required", {"amount": str(amount)})
        if not months:
            raise InvalidInputError("At least one month is required")

        existing = index_by_month(member.member_id, contributions)
        allowed = set(self.required_month_keys(member, reference_now))
        result = HistoricalCreationResult()
        paid_at = as_datetime(reference_now) if mark_as_paid else None
        method = PaymentMethod(payment_method) if (mark_as_paid and payment_method) else None

        for key in months:
            if not is_month_key(key):
                result.errors.append(f"Invalid month format: {key}")
                continue
            if key in existing:
                result.skipped.append(key)
                continue
            if key not in allowed:
                result.errors.append(f"Month {key} is outside the required contribution window")
                continue

            record = Contribution(
                contribution_id=self._id_factory(),
                member_id=member.member_id,
                month=key,
                year=int(key[:4]),
                amount=amount,
                paid_status=ContributionStatus.PAID if mark_as_paid else ContributionStatus.PENDING,
                paid_date=paid_at,
                payment_method=method,
                recorded_by=recorded_by if mark_as_paid else None,
                notes=(notes or "").strip(),
            )
            existing[key] = record
            result.created.append(record)

        logger.info(
            "Historical contributions for %s: created=%d skipped=%d errors=%d",
            member.member_id, len(result.created), len(result.skipped), len(result.errors),
        )
        return result

