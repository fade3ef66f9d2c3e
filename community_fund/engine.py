"""Business logic engine for the community fund.

This module provides the CommunityFundEngine class which acts as a facade over
the focused service classes in community_fund/services/. The services are
pure: they take record snapshots and return new ones. The engine loads
records from the DatabaseManager, runs the service, and saves the result in
one transaction.

Service Classes:
    - LoanStateMachine: Loan lifecycle transitions
    - RepaymentAllocator: Principal/interest split of payments
    - SettlementCalculator: Interest-only and full settlement
    - HistoricalContributionPlanner: Required, paid and missing months
    - ContributionService: Monthly contribution records
    - NewMemberCatchUpCalculator: Joining payment for late members
    - HistoricalInterestLedger: Admin-entered interest outside the loan ledger
"""
import uuid
from datetime import datetime

from community_fund.commands import (
    ApproveLoan,
    CorrectApprovalDate,
    CreateHistoricalContributions,
    CreateMonthlyContributions,
    DisburseLoan,
    RecordContributionPayment,
    RecordHistoricalInterest,
    RecordRepayment,
    RejectLoan,
    RequestLoan,
    SettleLoan,
    UpdateHistoricalInterest,
)
from community_fund.config import CommunityConfig
from community_fund.database import DatabaseManager
from community_fund.exceptions import InvalidInputError
from community_fund.logging import get_logger, setup_logging
from community_fund.models import Contribution, InterestSource, LoanStatus, Member
from community_fund.periods import as_datetime, parse_month_key
from community_fund.reports import CommunityFinanceReport
from community_fund.services import (
    BalanceRecalculator,
    ContributionService,
    HistoricalContributionPlanner,
    HistoricalInterestLedger,
    LoanStateMachine,
    NewMemberCatchUpCalculator,
    RepaymentAllocator,
    SettlementCalculator,
    accrued_interest,
    repayment_history_frame,
)

logger = get_logger(__name__)


class CommunityFundEngine:
    """Handles business logic, interfacing with DatabaseManager.
    
    Every mutating method accepts an optional ``reference_now``; when omitted
    the engine clock is read once per call.
    
    Attributes:
        db: DatabaseManager instance for data persistence.
        config: CommunityConfig with the community constants.
    """
    
    def __init__(self, db_manager, config=None, clock=None):
        self.db = db_manager
        self.config = config or CommunityConfig()
        self._clock = clock or datetime.now
        self._state_machine = None
        self._allocator = None
        self._settlement_calculator = None
        self._planner = None
        self._contribution_service = None
        self._catch_up_calculator = None
        self._balance_recalculator = None
        self._interest_ledger = None
        self._finance_report = None

    @classmethod
    def from_env(cls, db_name="community_fund.db"):
        """Build an engine from environment configuration and set up logging."""
        config = CommunityConfig.from_env()
        setup_logging(config.log_level, json_format=config.log_format == "json")
        return cls(DatabaseManager(db_name), config)

    @property
    def state_machine(self):
        """Lazy-load LoanStateMachine instance."""
        if self._state_machine is None:
            self._state_machine = LoanStateMachine(self.config.default_loan_interest_rate)
        return self._state_machine

    @property
    def allocator(self):
        """Lazy-load RepaymentAllocator instance."""
        if self._allocator is None:
            self._allocator = RepaymentAllocator()
        return self._allocator

    @property
    def settlement_calculator(self):
        """Lazy-load SettlementCalculator instance."""
        if self._settlement_calculator is None:
            self._settlement_calculator = SettlementCalculator(
                self.state_machine, self.allocator, self.config.interest_guard
            )
        return self._settlement_calculator

    @property
    def planner(self):
        """Lazy-load HistoricalContributionPlanner instance."""
        if self._planner is None:
            self._planner = HistoricalContributionPlanner(self.config)
        return self._planner

    @property
    def contribution_service(self):
        """Lazy-load ContributionService instance."""
        if self._contribution_service is None:
            self._contribution_service = ContributionService(self.config)
        return self._contribution_service

    @property
    def catch_up_calculator(self):
        """Lazy-load NewMemberCatchUpCalculator instance."""
        if self._catch_up_calculator is None:
            self._catch_up_calculator = NewMemberCatchUpCalculator(self.config)
        return self._catch_up_calculator

    @property
    def balance_recalculator(self):
        """Lazy-load BalanceRecalculator instance."""
        if self._balance_recalculator is None:
            self._balance_recalculator = BalanceRecalculator()
        return self._balance_recalculator

    @property
    def interest_ledger(self):
        """Lazy-load HistoricalInterestLedger instance."""
        if self._interest_ledger is None:
            self._interest_ledger = HistoricalInterestLedger()
        return self._interest_ledger

    @property
    def finance_report(self):
        if self._finance_report is None:
            self._finance_report = CommunityFinanceReport()
        return self._finance_report

    def _now(self, reference_now):
        return as_datetime(reference_now) if reference_now is not None else self._clock()

    def _save(self, updated, original):
        """Persist a loan transition under optimistic locking."""
        with self.db.transaction():
            return self.db.save_loan(updated, original.version)

    # --- Members ---

    def add_member(self, name, join_date, member_id=None, is_active=True):
        if not name or not name.strip():
            raise InvalidInputError("Member name is required")
        member = Member(
            member_id=member_id or str(uuid.uuid4()),
            name=name.strip(),
            join_date=as_datetime(join_date),
            is_active=is_active,
        )
        with self.db.transaction():
            self.db.add_member(member)
        logger.info("Member %s added", member.member_id)
        return member

    # --- Loan lifecycle ---

    def request_loan(self, command: RequestLoan, reference_now=None):
        """Create a pending loan request for an existing member."""
        command.validate()
        self.db.get_member(command.member_id)
        loan = self.state_machine.request(
            str(uuid.uuid4()), command.member_id, command.requested_amount,
            self._now(reference_now), command.purpose,
        )
        with self.db.transaction():
            loan = self.db.add_loan(loan)
        logger.info("Loan %s requested by %s: %s", loan.loan_id, loan.member_id, loan.requested_amount)
        return loan

    def approve_loan(self, loan_id, command: ApproveLoan, reference_now=None):
        command.validate()
        loan = self.db.get_loan(loan_id)
        approved = self.state_machine.approve(
            loan,
            approved_amount=command.approved_amount,
            interest_rate=command.interest_rate,
            notes=command.notes,
            reference_now=self._now(reference_now),
            approved_by=command.approved_by,
        )
        return self._save(approved, loan)

    def reject_loan(self, loan_id, command: RejectLoan):
        command.validate()
        loan = self.db.get_loan(loan_id)
        return self._save(self.state_machine.reject(loan, command.reason), loan)

    def disburse_loan(self, loan_id, command: DisburseLoan, reference_now=None):
        command.validate()
        loan = self.db.get_loan(loan_id)
        disbursed = self.state_machine.disburse(
            loan, command.disbursement_date, self._now(reference_now)
        )
        return self._save(disbursed, loan)

    def correct_approval_date(self, loan_id, command: CorrectApprovalDate, reference_now=None):
        command.validate()
        loan = self.db.get_loan(loan_id)
        corrected = self.state_machine.correct_approval_date(
            loan, command.approval_date, self._now(reference_now)
        )
        logger.info("Loan %s approval date corrected to %s", loan_id, corrected.approval_date.date())
        return self._save(corrected, loan)

    def record_repayment(self, loan_id, command: RecordRepayment, reference_now=None):
        """Record a repayment. A disbursed loan whose balance reaches zero completes.
        
        Returns:
            Tuple of (updated loan, Repayment).
        """
        command.validate()
        now = self._now(reference_now)
        loan = self.db.get_loan(loan_id)
        updated, repayment = self.allocator.record_repayment(
            loan,
            amount=command.amount,
            payment_type=command.payment_type,
            principal_component=command.principal_amount,
            interest_component=command.interest_amount,
            method=command.payment_method,
            payment_date=command.payment_date or now,
            notes=command.notes,
            receipt_number=command.receipt_number,
            recorded_by=command.recorded_by,
        )
        if updated.status == LoanStatus.DISBURSED and updated.remaining_balance == 0:
            updated = self.state_machine.complete(updated, repayment.payment_date)
        return self._save(updated, loan), repayment

    def quote_settlement(self, loan_id, settlement_date=None, reference_now=None):
        """Quote both settlement options without changing anything."""
        now = self._now(reference_now)
        loan = self.db.get_loan(loan_id)
        return self.settlement_calculator.quote(loan, settlement_date or now, now)

    def settle_loan(self, loan_id, command: SettleLoan, reference_now=None):
        """Commit an interest-only or full settlement.
        
        Returns:
            Tuple of (updated loan, Repayment or None, SettlementQuote).
        """
        command.validate()
        loan = self.db.get_loan(loan_id)
        updated, repayment, quote = self.settlement_calculator.settle(
            loan, command.settlement_type, command.settlement_date,
            self._now(reference_now), command.recorded_by,
        )
        return self._save(updated, loan), repayment, quote

    def accrued_interest(self, loan_id, reference_now=None):
        return accrued_interest(self.db.get_loan(loan_id), self._now(reference_now))

    def loan_history(self, loan_id):
        """Repayment history of one loan as a DataFrame."""
        return repayment_history_frame(self.db.get_loan(loan_id))

    def reconcile_loan(self, loan_id):
        """Rebuild stored loan totals from the repayment history.
        
        Returns:
            Tuple of (loan, list of discrepancies found).
        """
        loan = self.db.get_loan(loan_id)
        issues = self.balance_recalculator.find_discrepancies(loan)
        if not issues:
            return loan, issues
        return self._save(self.balance_recalculator.recalculate(loan), loan), issues

    # --- Contributions ---

    def plan_contributions(self, member_id, reference_now=None):
        member = self.db.get_member(member_id)
        contributions = self.db.get_contributions(member_id=member_id)
        return self.planner.plan(member, contributions, self._now(reference_now))

    def create_historical_contributions(self, command: CreateHistoricalContributions,
                                        reference_now=None):
        """Create records for selected missing months of one member.
        
        The existing-record read and the insert share one transaction, and a
        month stored by another writer in between is moved to ``skipped``.
        """
        command.validate()
        member = self.db.get_member(command.member_id)
        with self.db.transaction():
            result = self.planner.create_missing_contributions(
                member,
                command.months,
                command.amount,
                self.db.get_contributions(member_id=member.member_id),
                self._now(reference_now),
                payment_method=command.payment_method,
                mark_as_paid=command.mark_as_paid,
                notes=command.notes,
                recorded_by=command.recorded_by,
            )
            if result.created:
                inserted = self.db.add_contributions(result.created, skip_existing=True)
                stored_ids = {c.contribution_id for c in inserted}
                result.skipped.extend(
                    c.month for c in result.created if c.contribution_id not in stored_ids
                )
                result.created = inserted
        return result

    def create_monthly_contributions(self, command: CreateMonthlyContributions):
        command.validate()
        if command.member_ids:
            members = [self.db.get_member(m) for m in command.member_ids]
        else:
            members = self.db.get_members(active_only=True)
        key = f"{command.year:04d}-{command.month:02d}"
        with self.db.transaction():
            created = self.contribution_service.create_monthly_contributions(
                members, command.year, command.month,
                self.db.get_contributions(month=key), command.amount,
            )
            if created:
                created = self.db.add_contributions(created, skip_existing=True)
        return created

    def _get_or_new_contribution(self, member_id, month):
        existing = self.db.get_contribution(member_id, month)
        if existing is not None:
            return existing, True
        start = parse_month_key(month)
        return Contribution(
            contribution_id=str(uuid.uuid4()),
            member_id=member_id,
            month=month,
            year=start.year,
            amount=self.config.default_contribution_amount,
        ), False

    def _store_contribution(self, contribution, exists):
        with self.db.transaction():
            if exists:
                self.db.update_contribution(contribution)
            else:
                self.db.add_contributions([contribution])
        return contribution

    def record_contribution_payment(self, command: RecordContributionPayment, reference_now=None):
        """Admin records a payment, creating the month's record if needed."""
        command.validate()
        self.db.get_member(command.member_id)
        contribution, exists = self._get_or_new_contribution(command.member_id, command.month)
        paid = self.contribution_service.record_payment(
            contribution, self._now(reference_now), command.amount,
            command.payment_method, command.notes, command.recorded_by,
        )
        return self._store_contribution(paid, exists)

    def submit_member_contribution(self, command: RecordContributionPayment, reference_now=None):
        """Member reports a payment; it waits for admin approval."""
        command.validate()
        self.db.get_member(command.member_id)
        contribution, exists = self._get_or_new_contribution(command.member_id, command.month)
        submitted = self.contribution_service.submit_member_contribution(
            contribution, self._now(reference_now), command.amount,
            command.payment_method, command.notes,
        )
        return self._store_contribution(submitted, exists)

    def approve_contribution(self, member_id, month, recorded_by):
        contribution = self.db.get_contribution(member_id, month)
        if contribution is None:
            raise InvalidInputError(
                "Contribution not found", {"member_id": member_id, "month": month}
            )
        approved = self.contribution_service.approve_contribution(contribution, recorded_by)
        return self._store_contribution(approved, True)

    def mark_overdue_contributions(self, reference_now=None):
        changed = self.contribution_service.mark_overdue(
            self.db.get_contributions(status="pending"), self._now(reference_now)
        )
        if changed:
            with self.db.transaction():
                for contribution in changed:
                    self.db.update_contribution(contribution)
        return changed

    def calculate_new_member_payment(self, joining_date, reference_now=None):
        return self.catch_up_calculator.calculate(joining_date, self._now(reference_now))

    # --- Historical interest ---

    def _check_references(self, member_id, loan_id):
        if member_id:
            self.db.get_member(member_id)
        if loan_id:
            self.db.get_loan(loan_id)

    def record_historical_interest(self, command: RecordHistoricalInterest, reference_now=None):
        """Add a historical interest record with a new receipt number."""
        command.validate()
        self._check_references(command.member_id, command.loan_id)
        with self.db.transaction():
            record = self.interest_ledger.record(
                command, self.db.count_historical_interest(), self._now(reference_now)
            )
            self.db.add_historical_interest(record)
        return record

    def list_historical_interest(self, year=None, month=None, source=None,
                                 start_date=None, end_date=None):
        """Historical interest records, newest first.
        
        ``year`` with an optional ``month`` selects a calendar period; otherwise
        ``start_date``/``end_date`` bound the interest date (both inclusive).
        """
        start, end_before = self.interest_ledger.filter_window(year, month, start_date, end_date)
        if source is not None:
            try:
                source = InterestSource(source)
            except ValueError:
                raise InvalidInputError("Unknown interest source", {"source": repr(source)})
        return self.db.get_historical_interest(start, end_before, source)

    def get_historical_interest(self, record_id):
        return self.db.get_historical_interest_record(record_id)

    def update_historical_interest(self, record_id, command: UpdateHistoricalInterest,
                                   reference_now=None):
        command.validate()
        self._check_references(command.member_id, command.loan_id)
        with self.db.transaction():
            record = self.db.get_historical_interest_record(record_id)
            updated = self.interest_ledger.update(record, command, self._now(reference_now))
            self.db.update_historical_interest(updated)
        logger.info("Historical interest %s updated", updated.receipt_number)
        return updated

    def delete_historical_interest(self, record_id):
        with self.db.transaction():
            self.db.delete_historical_interest(record_id)
        logger.info("Historical interest %s deleted", record_id)

    def historical_interest_summary(self, year=None):
        return self.interest_ledger.summarize(self.db.get_historical_interest(), year)

    # --- Reports ---

    def community_finances(self, reference_now=None):
        return self.finance_report.summarize(
            self.db.get_loans(),
            self.db.get_contributions(),
            self._now(reference_now),
            self.db.get_historical_interest(),
        )
