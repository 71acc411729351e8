#!/usr/bin/env python3
"""
Tests for the monthly notification quota gate.
"""

import unittest

from dispatch.dto import UsageDTO
from dispatch.quota import QuotaGate
from tests.fakes import FakeStore


class TestQuotaGate(unittest.TestCase):

    def setUp(self):
        self.store = FakeStore()
        self.gate = QuotaGate(self.store.uow)

    def _usage(self, usage, limit, plan='free'):
        self.store.usage[1] = UsageDTO(tenant_id=1, plan_tier=plan, usage=usage, limit=limit)

    def test_under_limit_allowed(self):
        self._usage(10, 100)
        check = self.gate.check_quota(1)
        self.assertTrue(check.allowed)
        self.assertEqual(check.warning_level, 'normal')
        self.assertEqual(check.percentage, 10.0)

    def test_last_notification_of_the_month_allowed(self):
        self._usage(99, 100)
        check = self.gate.check_quota(1)
        self.assertTrue(check.allowed)
        self.assertEqual(check.warning_level, 'critical')

    def test_at_limit_denied(self):
        self._usage(100, 100)
        check = self.gate.check_quota(1)
        self.assertFalse(check.allowed)
        self.assertEqual(check.usage, 100)
        self.assertEqual(check.limit, 100)

    def test_batch_size_counts(self):
        self._usage(98, 100)
        self.assertTrue(self.gate.check_quota(1, 2).allowed)
        self.assertFalse(self.gate.check_quota(1, 3).allowed)

    def test_warning_threshold(self):
        self._usage(80, 100)
        self.assertEqual(self.gate.check_quota(1).warning_level, 'warning')

    def test_unlimited_plan(self):
        self._usage(1_000_000, None, plan='enterprise')
        check = self.gate.check_quota(1)
        self.assertTrue(check.allowed)
        self.assertIsNone(check.limit)

    def test_missing_subscription_fails_closed(self):
        check = self.gate.check_quota(1)
        self.assertFalse(check.allowed)
        self.assertEqual(check.warning_level, 'error')

    def test_lookup_error_fails_closed(self):
        self._usage(0, 100)
        self.store.fail_usage_lookup = True
        check = self.gate.check_quota(1)
        self.assertFalse(check.allowed)
        self.assertEqual(check.warning_level, 'error')

    def test_enforcement_disabled(self):
        gate = QuotaGate(self.store.uow, enforce=False)
        self.assertTrue(gate.check_quota(1).allowed)

    def test_track_usage_increments(self):
        self._usage(5, 100)
        self.assertEqual(self.gate.track_usage(1), 6)
        self.assertEqual(self.store.usage[1].usage, 6)


if __name__ == '__main__':
    unittest.main()
