#!/usr/bin/env python3
"""
Quiet hours and the delayed notification queue.

Tenants may configure a nightly quiet window, quiet weekends and holidays in
their own timezone. Notifications that arrive inside a quiet period are parked
in the delayed queue with `scheduled_for` set to the end of the period (UTC)
and re-offered to the delivery pipeline by DelayedQueueSweeper.

Quiet-hours lookups fail open: if the configuration cannot be read the
notification is sent now.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from core.utils import ensure_utc, utc_now
from database.uow import UnitOfWork
from dispatch.dto import AuditEntry, ChannelDTO, QueuedNotificationDTO, QuietHoursDTO, RuleDTO
from dispatch.events import InboundEvent

logger = logging.getLogger(__name__)

REASON_QUIET_HOURS = 'quiet_hours'
REASON_WEEKEND = 'weekend'
REASON_HOLIDAY = 'holiday'


@dataclass(frozen=True)
class QuietCheck:
    is_quiet: bool
    reason: Optional[str] = None  # quiet_hours | weekend | holiday | no_config | disabled | error
    next_allowed: Optional[datetime] = None  # UTC


@dataclass(frozen=True)
class QueueResult:
    queued: bool
    scheduled_for: Optional[datetime] = None
    delay_minutes: int = 0
    reason: Optional[str] = None
    queue_id: Optional[int] = None


@dataclass
class PendingNotification:
    """Everything needed to deliver later without re-running rule matching."""
    channel_url: str
    payload: Dict[str, Any]
    rule_id: Optional[int] = None
    channel_id: Optional[int] = None
    template_mode: str = 'simple'
    custom_template: Optional[str] = None


@dataclass
class SweepResult:
    processed: int = 0
    delivered: int = 0
    rescheduled: int = 0
    expired: int = 0
    errors: list = field(default_factory=list)


def parse_hhmm(value: str) -> dt_time:
    hours, minutes = str(value).strip().split(':')[:2]
    return dt_time(int(hours), int(minutes))


def _at_local(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, parse_hhmm(hhmm), tzinfo=tz).astimezone(timezone.utc)


def evaluate_quiet_hours(config: Optional[QuietHoursDTO], now: datetime) -> QuietCheck:
    """Pure quiet-period evaluation for one tenant configuration."""
    if config is None:
        return QuietCheck(is_quiet=False, reason='no_config')
    if not config.enabled:
        return QuietCheck(is_quiet=False, reason='disabled')

    tz = ZoneInfo(config.timezone or 'UTC')
    local = ensure_utc(now).astimezone(tz)
    today = local.date()

    if local.weekday() >= 5 and not config.weekends_enabled:
        monday = today + timedelta(days=7 - local.weekday())
        return QuietCheck(is_quiet=True, reason=REASON_WEEKEND,
                          next_allowed=_at_local(monday, config.end_time, tz))

    if today.isoformat() in set(config.holidays or []):
        return QuietCheck(is_quiet=True, reason=REASON_HOLIDAY,
                          next_allowed=_at_local(today + timedelta(days=1), config.end_time, tz))

    start = parse_hhmm(config.start_time)
    end = parse_hhmm(config.end_time)
    current = local.time().replace(second=0, microsecond=0, tzinfo=None)

    if start > end:
        # Window spans midnight, e.g. 18:00-09:00
        if current >= start:
            return QuietCheck(is_quiet=True, reason=REASON_QUIET_HOURS,
                              next_allowed=_at_local(today + timedelta(days=1), config.end_time, tz))
        if current < end:
            return QuietCheck(is_quiet=True, reason=REASON_QUIET_HOURS,
                              next_allowed=_at_local(today, config.end_time, tz))
    elif start < end and start <= current < end:
        return QuietCheck(is_quiet=True, reason=REASON_QUIET_HOURS,
                          next_allowed=_at_local(today, config.end_time, tz))

    return QuietCheck(is_quiet=False)


class QuietHoursGate:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def is_quiet_now(self, tenant_id: int, now: Optional[datetime] = None) -> QuietCheck:
        now = ensure_utc(now)
        try:
            with self.uow() as repos:
                config = repos.quiet_hours.get_config(tenant_id)
            return evaluate_quiet_hours(config, now)
        except Exception as e:
            logger.error(f"Quiet hours check failed for tenant {tenant_id}, sending now: {e}")
            return QuietCheck(is_quiet=False, reason='error')

    def enqueue_delayed(
        self,
        tenant_id: int,
        notification: PendingNotification,
        now: Optional[datetime] = None,
        check: Optional[QuietCheck] = None
    ) -> QueueResult:
        now = ensure_utc(now)
        check = check or self.is_quiet_now(tenant_id, now)
        if not check.is_quiet or check.next_allowed is None:
            return QueueResult(queued=False)

        scheduled_for = ensure_utc(check.next_allowed)
        with self.uow() as repos:
            row = repos.delayed.add(
                tenant_id=tenant_id,
                channel_url=notification.channel_url,
                payload=notification.payload,
                scheduled_for=scheduled_for,
                rule_id=notification.rule_id,
                channel_id=notification.channel_id,
                template_mode=notification.template_mode,
                custom_template=notification.custom_template,
                reason=check.reason,
            )

        delay_minutes = max(0, math.ceil((scheduled_for - now).total_seconds() / 60))
        logger.info(
            f"Queued notification {row.id} for tenant {tenant_id} ({check.reason}), "
            f"scheduled for {scheduled_for.isoformat()} (+{delay_minutes}m)"
        )
        return QueueResult(queued=True, scheduled_for=scheduled_for, delay_minutes=delay_minutes,
                           reason=check.reason, queue_id=row.id)


class DelayedQueueSweeper:
    """Re-offers due delayed notifications to the delivery pipeline."""

    def __init__(
        self,
        uow: UnitOfWork,
        delivery,
        quota,
        audit_sink,
        batch_size: int = 50,
        retry_delay_minutes: int = 5,
        max_attempts: int = 5,
        max_age_hours: int = 48,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], datetime] = utc_now
    ):
        self.uow = uow
        self.delivery = delivery
        self.quota = quota
        self.audit_sink = audit_sink
        self.batch_size = batch_size
        self.retry_delay = timedelta(minutes=retry_delay_minutes)
        self.max_attempts = max_attempts
        self.max_age = timedelta(hours=max_age_hours)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _expired(self, item: QueuedNotificationDTO, now: datetime) -> Optional[str]:
        if item.attempts >= self.max_attempts:
            return f"Gave up after {item.attempts} attempts"
        if item.created_at is not None and now - ensure_utc(item.created_at) > self.max_age:
            return f"Expired after {self.max_age.total_seconds() / 3600:.0f}h in delayed queue"
        return None

    def _audit(self, item: QueuedNotificationDTO, event_type: Optional[str], **kwargs) -> None:
        self.audit_sink.record(item.tenant_id, AuditEntry(
            event_type=event_type,
            payload=item.payload,
            rule_id=item.rule_id,
            channel_id=item.channel_id,
            retry_count=item.attempts,
            **kwargs
        ))

    def _process_one(self, item: QueuedNotificationDTO, now: datetime, result: SweepResult) -> None:
        event_type = item.payload.get('event') if isinstance(item.payload, dict) else None

        reason = self._expired(item, now)
        if reason is None:
            try:
                event = InboundEvent.from_webhook(item.payload)
            except ValueError as e:
                reason = f"Malformed queued payload: {e}"

        if reason is not None:
            with self.uow() as repos:
                repos.delayed.delete(item.id)
            self._audit(item, event_type, status='failed', error_message=reason)
            logger.warning(f"Dropped delayed notification {item.id}: {reason}")
            result.expired += 1
            return

        # The stored template is used even if the rule has since been removed
        rule = RuleDTO(
            id=item.rule_id or 0,
            tenant_id=item.tenant_id,
            name=f"delayed-{item.id}",
            event_type=event.event_type,
            target_channel_id=item.channel_id,
            template_mode=item.template_mode,
            custom_template=item.custom_template,
        )
        channel = ChannelDTO(id=item.channel_id or 0, tenant_id=item.tenant_id,
                             name=f"channel-{item.channel_id}", webhook_url=item.channel_url)

        outcome = self.delivery.deliver(rule, event, channel, item.tenant_id)

        if outcome.success:
            with self.uow() as repos:
                repos.delayed.delete(item.id)
            try:
                self.quota.track_usage(item.tenant_id, 1)
            except Exception as e:
                logger.error(f"Failed to track usage for tenant {item.tenant_id}: {e}")
            self._audit(item, event.event_type, status='success',
                        formatted_message=outcome.formatted_message,
                        response_code=outcome.status_code,
                        response_time_ms=outcome.response_time_ms,
                        tier=outcome.tier)
            result.delivered += 1
            return

        error = outcome.error_message()
        with self.uow() as repos:
            repos.delayed.reschedule(item.id, now + self.retry_delay, error[:1000])
        logger.info(f"Rescheduled delayed notification {item.id} (attempt {item.attempts + 1}): {outcome.status}")
        result.rescheduled += 1

    def process_due(self, now: Optional[datetime] = None) -> SweepResult:
        now = ensure_utc(now or self._clock())
        result = SweepResult()

        with self.uow() as repos:
            due = repos.delayed.get_due(now, limit=self.batch_size, lease_until=now + self.retry_delay)

        for item in due:
            result.processed += 1
            try:
                self._process_one(item, now, result)
            except Exception as e:
                logger.error(f"Delayed notification {item.id} failed: {e}", exc_info=True)
                result.errors.append(f"{item.id}: {e}")

        if due:
            logger.info(
                f"Delayed queue sweep: {result.processed} processed, {result.delivered} delivered, "
                f"{result.rescheduled} rescheduled, {result.expired} expired"
            )
        return result

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.process_due()
            except Exception as e:
                logger.error(f"Delayed queue sweep failed: {e}", exc_info=True)
            self._stop_event.wait(self.sweep_interval_seconds)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="delayed-queue-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Delayed queue sweeper started (interval={self.sweep_interval_seconds}s)")

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
