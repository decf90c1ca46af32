import os
import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from schemas.security import DEFAULT_SECURITY_CONFIG, SecurityConfig
from services.business_clock import BUSINESS_TIMEZONE, format_business_datetime, to_business_time
from services.timeout_policy import TimeoutPolicy, resolve_policy


def _at(hour, minute=0):
    return datetime(2025, 11, 17, hour, minute, tzinfo=BUSINESS_TIMEZONE)


class TimeoutPolicyTests(unittest.TestCase):
    def test_business_hours_use_short_thresholds(self):
        for hour in range(0, 17):
            with self.subTest(hour=hour):
                self.assertEqual(resolve_policy(_at(hour, 59)), TimeoutPolicy(1_080_000, 1_200_000, False))

    def test_after_hours_use_long_thresholds(self):
        for hour in range(17, 24):
            with self.subTest(hour=hour):
                self.assertEqual(resolve_policy(_at(hour)), TimeoutPolicy(2_580_000, 2_700_000, True))

    def test_warning_always_precedes_expiry(self):
        for hour in range(24):
            policy = resolve_policy(_at(hour))
            self.assertLess(policy.warning_delay_ms, policy.idle_delay_ms)
            self.assertEqual(policy.warning_window_ms, 120_000)

    def test_custom_after_hours_start(self):
        config = SecurityConfig(AFTER_HOURS_START=12)
        self.assertTrue(resolve_policy(_at(12), config).is_after_hours)
        self.assertFalse(resolve_policy(_at(11, 59), config).is_after_hours)

    def test_utc_input_is_converted_to_business_time(self):
        utc_value = datetime(2025, 11, 17, 20, 30, tzinfo=timezone.utc)
        local = to_business_time(utc_value)
        self.assertEqual(local.hour, 17)
        self.assertTrue(resolve_policy(local).is_after_hours)
        self.assertEqual(format_business_datetime(utc_value), "17/11/2025 17:30:00")


class SecurityConfigTests(unittest.TestCase):
    def test_defaults_match_published_constants(self):
        config = DEFAULT_SECURITY_CONFIG
        self.assertEqual(config.IDLE_WARNING_MS, 1_080_000)
        self.assertEqual(config.IDLE_TIMEOUT_MS, 1_200_000)
        self.assertEqual(config.AFTER_HOURS_IDLE_WARNING_MS, 2_580_000)
        self.assertEqual(config.AFTER_HOURS_IDLE_TIMEOUT_MS, 2_700_000)
        self.assertEqual(config.AFTER_HOURS_START, 17)
        self.assertEqual(config.VERSION_CHECK_INTERVAL_MS, 300_000)
        self.assertEqual(config.UPDATE_GRACE_PERIOD_MS, 30_000)
        self.assertEqual(config.MAX_HEALTH_FAILURES, 3)
        self.assertEqual(config.HEALTH_CHECK_INTERVAL_MS, 120_000)

    def test_config_is_immutable(self):
        with self.assertRaises(ValidationError):
            DEFAULT_SECURITY_CONFIG.IDLE_TIMEOUT_MS = 1

    def test_warning_must_precede_timeout(self):
        with self.assertRaises(ValidationError):
            SecurityConfig(IDLE_WARNING_MS=1_200_000, IDLE_TIMEOUT_MS=1_200_000)
        with self.assertRaises(ValidationError):
            SecurityConfig(AFTER_HOURS_IDLE_WARNING_MS=3_000_000)

    def test_after_hours_start_must_be_an_hour(self):
        with self.assertRaises(ValidationError):
            SecurityConfig(AFTER_HOURS_START=24)

    def test_from_env_reads_prefixed_overrides(self):
        config = SecurityConfig.from_env(
            {
                "SESSION_GUARD_IDLE_WARNING_MS": "60000",
                "SESSION_GUARD_IDLE_TIMEOUT_MS": "90000",
                "SESSION_GUARD_MAX_HEALTH_FAILURES": " 5 ",
                "IDLE_TIMEOUT_MS": "1",
            }
        )
        self.assertEqual(config.IDLE_WARNING_MS, 60_000)
        self.assertEqual(config.IDLE_TIMEOUT_MS, 90_000)
        self.assertEqual(config.MAX_HEALTH_FAILURES, 5)
        self.assertEqual(config.UPDATE_GRACE_PERIOD_MS, 30_000)

    def test_from_env_defaults_to_process_environment(self):
        previous = os.environ.pop("SESSION_GUARD_AFTER_HOURS_START", None)
        os.environ["SESSION_GUARD_AFTER_HOURS_START"] = "18"
        try:
            self.assertEqual(SecurityConfig.from_env().AFTER_HOURS_START, 18)
        finally:
            os.environ.pop("SESSION_GUARD_AFTER_HOURS_START", None)
            if previous is not None:
                os.environ["SESSION_GUARD_AFTER_HOURS_START"] = previous


if __name__ == "__main__":
    unittest.main()
