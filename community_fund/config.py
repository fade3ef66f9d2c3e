"""Centralized configuration for the community fund engine.

This module contains the default values and business rule constants used by
the accrual services, plus the runtime ``CommunityConfig`` supplied by the
surrounding application.
"""
import os
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from community_fund.exceptions import ConfigurationError

# =============================================================================
# LOAN DEFAULTS
# =============================================================================

# Standard annual loan interest rate (percent)
DEFAULT_INTEREST_RATE = Decimal("16")

# Upper bound for any annual rate accepted at approval (percent)
MAX_INTEREST_RATE = Decimal("100")

# =============================================================================
# CONTRIBUTION DEFAULTS
# =============================================================================

# Monthly contribution amount
DEFAULT_CONTRIBUTION_AMOUNT = Decimal("2000")

# Annual rate credited on late-joiner catch-up contributions (percent)
DEFAULT_COMMUNITY_INTEREST_RATE = Decimal("10")

# Community opening date
DEFAULT_OPENING_DATE = datetime(2022, 9, 15)

# Number of months a catch-up payment may be spread over
CATCH_UP_SPREAD_MONTHS = 24

# =============================================================================
# DAY COUNT
# =============================================================================

DAYS_PER_YEAR = Decimal("365")

# Average month length, used only for audit display of elapsed months
AVERAGE_DAYS_PER_MONTH = Decimal("30.44")

SECONDS_PER_DAY = Decimal("86400")

# =============================================================================
# FORMATS
# =============================================================================

# Date format for storage (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Timestamp format for storage
DATETIME_FORMAT_STORAGE = "%Y-%m-%d %H:%M:%S"

# Contribution month key
MONTH_KEY_FORMAT = "%Y-%m"

# Currency quantum (two decimal places)
CURRENCY_QUANTUM = Decimal("0.01")

# Length of the community finances history window
FINANCE_HISTORY_MONTHS = 12

# Accepted log output formats
LOG_FORMATS = ("standard", "json")


class InterestGuard(str, Enum):
    """Policy deciding when a repeated interest-only settlement is refused."""

    DATE_WINDOW = "date_window"
    CALENDAR_YEAR = "calendar_year"


@dataclass(frozen=True)
class CommunityConfig:
    """Read-only community constants supplied by the host application.

    Money and rate fields accept int, float, str or Decimal and are stored
    as Decimal.
    """

    opening_date: datetime = DEFAULT_OPENING_DATE
    default_contribution_amount: Decimal = DEFAULT_CONTRIBUTION_AMOUNT
    annual_interest_rate: Decimal = DEFAULT_COMMUNITY_INTEREST_RATE
    default_loan_interest_rate: Decimal = DEFAULT_INTEREST_RATE
    interest_guard: InterestGuard = InterestGuard.DATE_WINDOW
    log_level: str = "INFO"
    log_format: str = "standard"

    def __post_init__(self):
        for name in ("default_contribution_amount", "annual_interest_rate",
                     "default_loan_interest_rate"):
            object.__setattr__(self, name, _decimal(name, getattr(self, name)))
        try:
            object.__setattr__(self, "interest_guard", InterestGuard(self.interest_guard))
        except ValueError:
            raise ConfigurationError(
                "Invalid interest guard", {"interest_guard": repr(self.interest_guard)}
            )
        if self.log_format not in LOG_FORMATS:
            raise ConfigurationError(
                "Log format must be standard or json", {"log_format": self.log_format}
            )

        if self.default_contribution_amount <= 0:
            raise ConfigurationError(
                "Contribution amount must be positive",
                {"default_contribution_amount": str(self.default_contribution_amount)},
            )
        for name in ("annual_interest_rate", "default_loan_interest_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate > MAX_INTEREST_RATE:
                raise ConfigurationError(
                    "Interest rate must be between 0 and 100", {name: str(rate)}
                )

    @classmethod
    def from_env(cls) -> "CommunityConfig":
        """Create config from environment variables."""
        opening_str = os.getenv("COMMUNITY_OPENING_DATE")
        try:
            opening_date = (
                datetime.strptime(opening_str, DATE_FORMAT_STORAGE)
                if opening_str
                else DEFAULT_OPENING_DATE
            )
        except ValueError:
            raise ConfigurationError(
                "Invalid COMMUNITY_OPENING_DATE", {"value": opening_str}
            )

        guard_str = os.getenv("INTEREST_GUARD", InterestGuard.DATE_WINDOW.value)
        try:
            guard = InterestGuard(guard_str.lower())
        except ValueError:
            raise ConfigurationError("Invalid INTEREST_GUARD", {"value": guard_str})

        return cls(
            opening_date=opening_date,
            default_contribution_amount=_env_decimal(
                "COMMUNITY_CONTRIBUTION_AMOUNT", DEFAULT_CONTRIBUTION_AMOUNT
            ),
            annual_interest_rate=_env_decimal(
                "COMMUNITY_INTEREST_RATE", DEFAULT_COMMUNITY_INTEREST_RATE
            ),
            default_loan_interest_rate=_env_decimal(
                "LOAN_INTEREST_RATE", DEFAULT_INTEREST_RATE
            ),
            interest_guard=guard,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard").lower(),
        )


def _decimal(name, value):
    if isinstance(value, bool) or value is None:
        raise ConfigurationError(f"Invalid {name}", {"value": repr(value)})
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"Invalid {name}", {"value": repr(value)})
    if not result.is_finite():
        raise ConfigurationError(f"{name} must be a finite number", {"value": str(result)})
    return result


def _env_decimal(name, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return _decimal(name, raw)
