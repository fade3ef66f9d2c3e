"""Contribution lifecycle service.

This service handles the monthly contribution records themselves:
- Bulk monthly setup for active members
- Admin payment recording
- Member self-reported payments awaiting approval
- Approval and overdue marking
"""
import uuid
from dataclasses import replace

from community_fund.config import CommunityConfig, MONTH_KEY_FORMAT
from community_fund.exceptions import InvalidInputError, InvalidTransitionError
from community_fund.logging import get_logger
from community_fund.models import Contribution, ContributionStatus, PaymentMethod
from community_fund.periods import as_datetime, month_start, parse_month_key
from community_fund.services.interest_calculator import round_currency

logger = get_logger(__name__)


class ContributionService:
    """Creates and updates Contribution records."""
    
    def __init__(self, config=None, id_factory=None):
        """Initialize ContributionService.
        
        Args:
            config: CommunityConfig supplying the default monthly amount.
            id_factory: Optional callable returning new contribution IDs.
        """
        self.config = config or CommunityConfig()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def create_monthly_contributions(self, members, year, month, existing, amount=None):
        """Create a pending contribution for each active member for one month.
        
        Members who already have a record for the month are skipped.
        
        Args:
            members: Members to set up.
            year: Calendar year.
            month: Calendar month (1-12).
            existing: Existing Contribution records for the month.
            amount: Amount owed; defaults to the configured contribution.
            
        Returns:
            List of newly created Contribution records.
        """
        if not 1 <= int(month) <= 12:
            raise InvalidInputError("Month must be between 1 and 12", {"month": month})
        key = f"{int(year):04d}-{int(month):02d}"
        amount = round_currency(amount if amount is not None else self.config.default_contribution_amount)
        if amount <= 0:
            raise InvalidInputError("Valid amount is required", {"amount": str(amount)})

        already = {c.member_id for c in existing if c.month == key}
        created = []
        for member in members:
            if not member.is_active or member.member_id in already:
                continue
            created.append(Contribution(
                contribution_id=self._id_factory(),
                member_id=member.member_id,
                month=key,
                year=int(year),
                amount=amount,
            ))
            already.add(member.member_id)

        logger.info("Created %d monthly contributions for %s", len(created), key)
        return created

    def record_payment(self, contribution, reference_now, amount=None,
                       payment_method=PaymentMethod.CASH, notes="", recorded_by=None):
        """Admin records a payment; the contribution becomes paid.
        
        Raises:
            InvalidTransitionError: If the contribution is already paid.
        """
        if contribution.paid_status == ContributionStatus.PAID:
            raise InvalidTransitionError(
                "record payment", contribution.paid_status.value,
                contribution.contribution_id, reason="contribution already paid",
            )
        paid = replace(
            contribution,
            paid_status=ContributionStatus.PAID,
            paid_date=as_datetime(reference_now),
            amount=round_currency(amount) if amount is not None else contribution.amount,
            payment_method=PaymentMethod(payment_method),
            notes=(notes or "").strip(),
            recorded_by=recorded_by,
        )
        logger.info("Contribution %s for %s marked paid", contribution.month, contribution.member_id)
        return paid

    def submit_member_contribution(self, contribution, reference_now, amount=None,
                                   payment_method=PaymentMethod.CASH, notes=""):
        """Member reports a payment; it stays pending until an admin approves it.
        
        Raises:
            InvalidTransitionError: If the contribution is already paid.
        """
        if contribution.paid_status == ContributionStatus.PAID:
            raise InvalidTransitionError(
                "submit contribution", contribution.paid_status.value,
                contribution.contribution_id, reason="contribution already recorded and approved",
            )
        return replace(
            contribution,
            paid_status=ContributionStatus.PENDING,
            paid_date=as_datetime(reference_now),
            amount=round_currency(amount) if amount is not None else contribution.amount,
            payment_method=PaymentMethod(payment_method),
            notes=(notes or "").strip(),
            recorded_by=None,
        )

    def approve_contribution(self, contribution, recorded_by):
        """Approve a pending or overdue contribution.
        
        Raises:
            InvalidTransitionError: If the contribution is already paid.
        """
        if contribution.paid_status == ContributionStatus.PAID:
            raise InvalidTransitionError(
                "approve contribution", contribution.paid_status.value,
                contribution.contribution_id, reason="contribution already approved",
            )
        logger.info("Contribution %s for %s approved", contribution.month, contribution.member_id)
        return replace(contribution, paid_status=ContributionStatus.PAID, recorded_by=recorded_by)

    def mark_overdue(self, contributions, reference_now):
        """Flag unpaid pending contributions for months before the reference month.
        
        Returns:
            List of contributions whose status changed.
        """
        current = month_start(reference_now)
        changed = []
        for c in contributions:
            # pending with a paid date is a member submission awaiting approval
            if c.paid_status != ContributionStatus.PENDING or c.paid_date is not None:
                continue
            if parse_month_key(c.month) < current:
                changed.append(replace(c, paid_status=ContributionStatus.OVERDUE))
        if changed:
            logger.info(
                "Marked %d contributions overdue before %s",
                len(changed), current.strftime(MONTH_KEY_FORMAT),
            )
        return changed
