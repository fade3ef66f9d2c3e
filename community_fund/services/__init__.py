"""Services package for community fund business logic.

Each service is a focused, stateless calculator over record snapshots. The
CommunityFundEngine composes them with persistence.
"""

from .interest_calculator import (
    accrued_interest,
    calculate_interest_between_dates,
    calculate_prorated_interest,
    round_currency,
    to_decimal,
)
from .loan_state_machine import LoanStateMachine, can_transition
from .repayment_allocator import RepaymentAllocator, repayment_history_frame
from .balance_calculator import BalanceRecalculator
from .settlement_calculator import SettlementCalculator
from .contribution_planner import HistoricalContributionPlanner
from .contribution_service import ContributionService
from .catch_up_calculator import NewMemberCatchUpCalculator
from .historical_interest import HistoricalInterestLedger

__all__ = ['accrued_interest', 'calculate_interest_between_dates', 'calculate_prorated_interest',
           'round_currency', 'to_decimal', 'LoanStateMachine', 'can_transition',
           'RepaymentAllocator', 'repayment_history_frame', 'BalanceRecalculator',
           'SettlementCalculator', 'HistoricalContributionPlanner', 'ContributionService',
           'NewMemberCatchUpCalculator', 'HistoricalInterestLedger']
