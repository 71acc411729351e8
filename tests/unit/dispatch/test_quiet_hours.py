#!/usr/bin/env python3
"""
Tests for quiet hours evaluation and the delayed notification queue.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from dispatch.circuit_breaker import CircuitBreaker
from dispatch.delivery import DeliveryPipeline, PrimaryTier
from dispatch.dto import QuietHoursDTO, UsageDTO
from dispatch.quiet_hours import (
    DelayedQueueSweeper,
    PendingNotification,
    QuietHoursGate,
    evaluate_quiet_hours,
    parse_hhmm,
)
from dispatch.quota import QuotaGate
from notification.tracker import MemoryAuditSink
from tests.fakes import FakeDelayedRepository, FakeSender, FakeStore


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def config(**kwargs):
    values = dict(tenant_id=1, enabled=True, timezone='UTC', start_time='18:00', end_time='09:00')
    values.update(kwargs)
    return QuietHoursDTO(**values)


class TestEvaluateQuietHours:

    def test_no_config_or_disabled(self):
        assert evaluate_quiet_hours(None, utc(2024, 6, 12, 22)).reason == 'no_config'
        check = evaluate_quiet_hours(config(enabled=False), utc(2024, 6, 12, 22))
        assert not check.is_quiet
        assert check.reason == 'disabled'

    def test_outside_window(self):
        assert not evaluate_quiet_hours(config(), utc(2024, 6, 12, 12)).is_quiet

    def test_evening_part_of_overnight_window(self):
        check = evaluate_quiet_hours(config(), utc(2024, 6, 12, 22, 30))
        assert check.is_quiet
        assert check.reason == 'quiet_hours'
        assert check.next_allowed == utc(2024, 6, 13, 9)

    def test_morning_part_of_overnight_window(self):
        check = evaluate_quiet_hours(config(), utc(2024, 6, 13, 7))
        assert check.next_allowed == utc(2024, 6, 13, 9)

    def test_window_boundaries(self):
        assert evaluate_quiet_hours(config(), utc(2024, 6, 12, 18, 0)).is_quiet
        assert not evaluate_quiet_hours(config(), utc(2024, 6, 12, 9, 0)).is_quiet

    def test_same_day_window(self):
        cfg = config(start_time='12:00', end_time='14:00')
        check = evaluate_quiet_hours(cfg, utc(2024, 6, 12, 13))
        assert check.next_allowed == utc(2024, 6, 12, 14)
        assert not evaluate_quiet_hours(cfg, utc(2024, 6, 12, 15)).is_quiet

    def test_tenant_timezone(self):
        # 23:00 UTC is 08:00 next day in Tokyo, inside 18:00-09:00
        check = evaluate_quiet_hours(config(timezone='Asia/Tokyo'), utc(2024, 6, 12, 23))
        assert check.is_quiet
        assert check.next_allowed == utc(2024, 6, 13, 0)

    def test_weekend_defers_to_monday(self):
        check = evaluate_quiet_hours(config(weekends_enabled=False), utc(2024, 6, 15, 12))
        assert check.reason == 'weekend'
        assert check.next_allowed == utc(2024, 6, 17, 9)

    def test_weekend_allowed_by_default(self):
        assert not evaluate_quiet_hours(config(), utc(2024, 6, 15, 12)).is_quiet

    def test_holiday(self):
        check = evaluate_quiet_hours(config(holidays=['2024-12-25']), utc(2024, 12, 25, 12))
        assert check.reason == 'holiday'
        assert check.next_allowed == utc(2024, 12, 26, 9)

    def test_parse_hhmm(self):
        assert parse_hhmm('07:30').hour == 7
        assert parse_hhmm('07:30:00').minute == 30


class TestQuietHoursGate:

    @pytest.fixture
    def store(self):
        store = FakeStore(now=utc(2024, 6, 12, 22))
        store.quiet_hours[1] = config()
        return store

    def test_lookup_failure_fails_open(self):
        uow = Mock(side_effect=RuntimeError("db down"))
        check = QuietHoursGate(uow).is_quiet_now(1, utc(2024, 6, 12, 22))
        assert not check.is_quiet
        assert check.reason == 'error'

    def test_enqueue_delayed(self, store):
        gate = QuietHoursGate(store.uow)
        pending = PendingNotification(channel_url='https://chat.example.com/a',
                                      payload={'event': 'deal.updated'}, rule_id=5, channel_id=6,
                                      template_mode='detailed')
        result = gate.enqueue_delayed(1, pending, utc(2024, 6, 12, 22))

        assert result.queued
        assert result.scheduled_for == utc(2024, 6, 13, 9)
        assert result.delay_minutes == 660
        row = store.delayed[result.queue_id]
        assert row.template_mode == 'detailed'
        assert row.reason == 'quiet_hours'

    def test_enqueue_outside_quiet_period_is_noop(self, store):
        gate = QuietHoursGate(store.uow)
        pending = PendingNotification(channel_url='https://chat.example.com/a', payload={})
        assert not gate.enqueue_delayed(1, pending, utc(2024, 6, 12, 12)).queued
        assert store.delayed == {}


class TestDelayedQueueSweeper:

    NOW = utc(2024, 6, 13, 9, 1)

    @pytest.fixture
    def store(self):
        store = FakeStore(now=utc(2024, 6, 12, 22))
        store.usage[1] = UsageDTO(tenant_id=1, plan_tier='free', usage=3, limit=100)
        return store

    def _queue(self, store, payload=None, scheduled_for=None):
        return FakeDelayedRepository(store).add(
            tenant_id=1,
            channel_url='https://chat.example.com/a',
            payload=payload or {'event': 'deal.updated', 'current': {'id': 1, 'title': 'T'}},
            scheduled_for=scheduled_for or utc(2024, 6, 13, 9),
            rule_id=5,
            channel_id=6,
        )

    def _sweeper(self, store, sender, **kwargs):
        delivery = DeliveryPipeline([PrimaryTier(sender)], CircuitBreaker())
        audit = MemoryAuditSink()
        sweeper = DelayedQueueSweeper(store.uow, delivery, QuotaGate(store.uow), audit, **kwargs)
        return sweeper, audit

    def test_due_notification_is_delivered_once(self, store):
        row = self._queue(store)
        sender = FakeSender()
        sweeper, audit = self._sweeper(store, sender)

        result = sweeper.process_due(self.NOW)

        assert result.delivered == 1
        assert row.id not in store.delayed
        assert sender.calls[0]['url'] == 'https://chat.example.com/a'
        assert store.usage[1].usage == 4
        entry = audit.by_status('success')[0]
        assert entry.tier == 1
        assert entry.rule_id == 5

        assert sweeper.process_due(self.NOW).processed == 0

    def test_not_yet_due_is_left_alone(self, store):
        self._queue(store, scheduled_for=utc(2024, 6, 14, 9))
        sweeper, _ = self._sweeper(store, FakeSender())
        assert sweeper.process_due(self.NOW).processed == 0

    def test_failure_reschedules(self, store):
        row = self._queue(store)
        sender = FakeSender(failing_urls={'https://chat.example.com/a'})
        sweeper, audit = self._sweeper(store, sender, retry_delay_minutes=5)

        result = sweeper.process_due(self.NOW)

        assert result.rescheduled == 1
        assert store.delayed[row.id].attempts == 1
        assert store.delayed[row.id].scheduled_for == self.NOW + timedelta(minutes=5)
        assert store.last_errors[row.id].startswith('All delivery tiers failed')
        assert audit.entries == []

    def test_gives_up_after_max_attempts(self, store):
        row = self._queue(store)
        store.delayed[row.id].attempts = 5
        sweeper, audit = self._sweeper(store, FakeSender(), max_attempts=5)

        result = sweeper.process_due(self.NOW)

        assert result.expired == 1
        assert store.delayed == {}
        assert 'Gave up after 5 attempts' in audit.by_status('failed')[0].error_message

    def test_drops_stale_notifications(self, store):
        self._queue(store)
        sweeper, audit = self._sweeper(store, FakeSender(), max_age_hours=1)
        assert sweeper.process_due(self.NOW).expired == 1
        assert audit.by_status('failed')

    def test_malformed_payload_is_dropped(self, store):
        self._queue(store, payload={'current': {}})
        sender = FakeSender()
        sweeper, audit = self._sweeper(store, sender)

        assert sweeper.process_due(self.NOW).expired == 1
        assert sender.calls == []
        assert 'Malformed' in audit.by_status('failed')[0].error_message
