"""Tests for configuration loading, logging setup and error types."""
import io
import json
import logging
import os
import sys
import unittest
from datetime import datetime
from decimal import Decimal
from unittest.mock import patch

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from community_fund.config import CommunityConfig, InterestGuard
from community_fund.exceptions import (
    CommunityFundError,
    ConcurrentModificationError,
    ConfigurationError,
    InvalidTransitionError,
    LoanNotFoundError,
    OverpaymentError,
    RecordNotFoundError,
)
from community_fund.logging import JsonFormatter, get_logger, setup_logging
from community_fund.models import Member
from community_fund.services import HistoricalContributionPlanner, NewMemberCatchUpCalculator


class TestCommunityConfig(unittest.TestCase):

    def test_defaults(self):
        config = CommunityConfig()
        self.assertEqual(config.opening_date, datetime(2022, 9, 15))
        self.assertEqual(config.default_contribution_amount, Decimal("2000"))
        self.assertEqual(config.annual_interest_rate, Decimal("10"))
        self.assertEqual(config.interest_guard, InterestGuard.DATE_WINDOW)

    @patch.dict(os.environ, {
        "COMMUNITY_OPENING_DATE": "2021-01-01",
        "COMMUNITY_CONTRIBUTION_AMOUNT": "1500",
        "LOAN_INTEREST_RATE": "12.5",
        "INTEREST_GUARD": "CALENDAR_YEAR",
    })
    def test_from_env(self):
        config = CommunityConfig.from_env()
        self.assertEqual(config.opening_date, datetime(2021, 1, 1))
        self.assertEqual(config.default_contribution_amount, Decimal("1500"))
        self.assertEqual(config.default_loan_interest_rate, Decimal("12.5"))
        self.assertEqual(config.interest_guard, InterestGuard.CALENDAR_YEAR)

    @patch.dict(os.environ, {"INTEREST_GUARD": "monthly"})
    def test_invalid_guard(self):
        with self.assertRaises(ConfigurationError):
            CommunityConfig.from_env()

    @patch.dict(os.environ, {"COMMUNITY_CONTRIBUTION_AMOUNT": "lots"})
    def test_invalid_amount(self):
        with self.assertRaises(ConfigurationError):
            CommunityConfig.from_env()

    def test_float_inputs_normalized_to_decimal(self):
        config = CommunityConfig(
            annual_interest_rate=10.5,
            default_contribution_amount=2000.5,
            default_loan_interest_rate="12",
            interest_guard="calendar_year",
        )
        self.assertEqual(config.annual_interest_rate, Decimal("10.5"))
        self.assertIsInstance(config.annual_interest_rate, Decimal)
        self.assertEqual(config.default_contribution_amount, Decimal("2000.5"))
        self.assertEqual(config.default_loan_interest_rate, Decimal("12"))
        self.assertEqual(config.interest_guard, InterestGuard.CALENDAR_YEAR)

    def test_float_config_drives_calculations(self):
        config = CommunityConfig(annual_interest_rate=10.5, default_contribution_amount=2000.5)

        result = NewMemberCatchUpCalculator(config).calculate(
            datetime(2023, 9, 20), datetime(2023, 9, 15)
        )
        self.assertEqual(result.total_base_contribution, Decimal("24006.00"))
        self.assertEqual(result.total_interest, Decimal("2520.63"))
        self.assertEqual(result.grand_total, Decimal("26526.63"))
        self.assertEqual(result.monthly_payment_option, Decimal("1105.28"))

        plan = HistoricalContributionPlanner(config).plan(
            Member("M1", "Amina", datetime(2023, 1, 10)), [], datetime(2023, 6, 15)
        )
        self.assertEqual(plan.missing_months_count, 5)
        self.assertEqual(plan.total_missing, Decimal("10002.5"))

    def test_non_finite_values_rejected(self):
        for value in (float("inf"), "NaN", "Infinity"):
            with self.subTest(value=value):
                with self.assertRaises(ConfigurationError):
                    CommunityConfig(default_contribution_amount=value)

    def test_invalid_log_format(self):
        with self.assertRaises(ConfigurationError):
            CommunityConfig(log_format="xml")

    @patch.dict(os.environ, {"COMMUNITY_INTEREST_RATE": "Infinity"})
    def test_env_rate_must_be_finite(self):
        with self.assertRaises(ConfigurationError):
            CommunityConfig.from_env()

    def test_rate_out_of_range(self):
        with self.assertRaises(ConfigurationError):
            CommunityConfig(annual_interest_rate=Decimal("150"))


class TestLogging(unittest.TestCase):

    def tearDown(self):
        setup_logging("WARNING")

    def test_setup_configures_package_logger_only(self):
        root_handlers = list(logging.getLogger().handlers)
        setup_logging("DEBUG")
        logger = setup_logging("DEBUG")
        self.assertIs(logger, logging.getLogger("community_fund"))
        self.assertEqual(logger.level, logging.DEBUG)
        self.assertEqual(len(logger.handlers), 1)
        self.assertFalse(logger.propagate)
        self.assertEqual(logging.getLogger().handlers, root_handlers)

    def test_json_output(self):
        stream = io.StringIO()
        setup_logging("INFO", json_format=True, stream=stream)
        get_logger("community_fund.engine").info("Loan %s approved", "L1")
        payload = json.loads(stream.getvalue().strip())
        self.assertEqual(payload["message"], "Loan L1 approved")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["logger"], "community_fund.engine")

    def test_json_formatter_includes_exception(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = logging.LogRecord(
                "community_fund.database", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        payload = json.loads(JsonFormatter().format(record))
        self.assertIn("ValueError: bad row", payload["exception"])

    def test_standard_output(self):
        stream = io.StringIO()
        setup_logging("WARNING", stream=stream)
        get_logger("community_fund.engine").info("hidden")
        get_logger("community_fund.engine").warning("shown")
        self.assertNotIn("hidden", stream.getvalue())
        self.assertIn("| WARNING  | community_fund.engine | shown", stream.getvalue())

    def test_get_logger_name(self):
        self.assertEqual(get_logger("community_fund.x").name, "community_fund.x")


class TestExceptions(unittest.TestCase):

    def test_hierarchy(self):
        self.assertTrue(issubclass(LoanNotFoundError, RecordNotFoundError))
        self.assertTrue(issubclass(OverpaymentError, CommunityFundError))

    def test_messages_carry_details(self):
        err = InvalidTransitionError("disburse", "pending", "L1")
        self.assertIn("Cannot disburse from status 'pending'", str(err))
        self.assertEqual(err.details["record_id"], "L1")

        err = OverpaymentError(Decimal("50000"), Decimal("30000"), "L1")
        self.assertIn("exceeds remaining balance 30000", str(err))

        err = ConcurrentModificationError("L1", 2, 3)
        self.assertEqual(err.details["actual_version"], 3)


if __name__ == '__main__':
    unittest.main()
