#!/usr/bin/env python3
"""
Notification dispatcher.

Runs one inbound CRM event through the whole pipeline:

    dedup -> tenant -> quota -> rules -> (per rule) filter -> route ->
    quiet hours -> delivery | delayed queue -> audit

Collaborators are injected at construction (see core.app_context). Every
terminal outcome reaches the audit sink before dispatch() returns; a failure
in one rule never stops its siblings.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from core.exceptions import NoChannelAvailable, QuotaExceeded, UnresolvedTenant
from core.utils import ensure_utc
from database.uow import UnitOfWork
from dispatch.dedup import Deduplicator
from dispatch.delivery import DeliveryPipeline
from dispatch.dto import AuditEntry, RuleDTO
from dispatch.events import InboundEvent, coerce_event
from dispatch.filters import CompiledFilter, compile_filter
from dispatch.quiet_hours import PendingNotification, QuietCheck, QuietHoursGate
from dispatch.quota import QuotaGate
from dispatch.router import ChannelRouter
from dispatch.rule_matcher import RuleMatcher
from dispatch.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)

SKIP_DUPLICATE = 'duplicate'
SKIP_INVALID_EVENT = 'invalid_event'
SKIP_UNRESOLVED_TENANT = 'unresolved_tenant'
SKIP_QUOTA_EXCEEDED = 'quota_exceeded'
SKIP_NO_RULES = 'no_matching_rules'


@dataclass
class RuleOutcome:
    rule_id: int
    status: str  # sent | queued | filtered | no_channel | failed
    channel_id: Optional[int] = None
    tier: Optional[int] = None
    delivery_status: Optional[str] = None
    error: Optional[str] = None
    scheduled_for: Optional[datetime] = None


@dataclass
class DispatchResult:
    tenant_id: Optional[int] = None
    strategy: Optional[str] = None
    rules_matched: int = 0
    notifications_sent: int = 0
    notifications_queued: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    quota_exceeded: bool = False
    outcomes: List[RuleOutcome] = field(default_factory=list)


class NotificationDispatcher:
    def __init__(
        self,
        dedup: Deduplicator,
        resolver: TenantResolver,
        quota: QuotaGate,
        matcher: RuleMatcher,
        router: ChannelRouter,
        quiet_hours: QuietHoursGate,
        delivery: DeliveryPipeline,
        audit_sink,
        uow: UnitOfWork
    ):
        self.dedup = dedup
        self.resolver = resolver
        self.quota = quota
        self.matcher = matcher
        self.router = router
        self.quiet_hours = quiet_hours
        self.delivery = delivery
        self.audit_sink = audit_sink
        self.uow = uow
        self._filters: Dict[int, Tuple[str, CompiledFilter]] = {}

    def _audit(self, tenant_id: Optional[int], entry: AuditEntry) -> None:
        try:
            self.audit_sink.record(tenant_id, entry)
        except Exception as e:
            logger.error(f"Audit sink failed for tenant {tenant_id}: {e}", exc_info=True)

    def _compiled_filter(self, rule: RuleDTO) -> CompiledFilter:
        fingerprint = json.dumps(rule.filters, sort_keys=True, default=str)
        cached = self._filters.get(rule.id)
        if cached is None or cached[0] != fingerprint:
            cached = (fingerprint, compile_filter(rule.filters))
            self._filters[rule.id] = cached
        return cached[1]

    def dispatch(self, raw_event: Union[Dict[str, Any], InboundEvent], now: Optional[datetime] = None) -> DispatchResult:
        now = ensure_utc(now)
        try:
            event = coerce_event(raw_event)
        except ValueError as e:
            logger.error(f"Rejecting malformed event: {e}")
            body = raw_event if isinstance(raw_event, dict) else {}
            self._audit(None, AuditEntry(status='skipped', event_type=body.get('event'), payload=dict(body),
                                         error_message=f"Malformed event: {e}"))
            return DispatchResult(skipped=True, skip_reason=SKIP_INVALID_EVENT)

        payload = event.to_webhook()
        result = DispatchResult()

        is_new = self.dedup.check_and_mark(event.correlation_id, event.entity_id, event.event_type)
        if not is_new:
            logger.info(f"Duplicate {event.event_type} (correlation {event.correlation_id}, "
                        f"entity {event.entity_id}); skipping")

        try:
            return self._dispatch_event(event, payload, is_new, result, now)
        except Exception as e:
            # Released so the queue's retry of this job is not taken for a duplicate
            if is_new:
                self.dedup.forget(event.correlation_id, event.entity_id, event.event_type)
            logger.error(f"Dispatch of {event.event_type} failed for tenant {result.tenant_id}: {e}", exc_info=True)
            self._audit(result.tenant_id, AuditEntry(status='failed', event_type=event.event_type, payload=payload,
                                                     error_message=f"Dispatch failed: {e}"))
            raise

    def _dispatch_event(self, event: InboundEvent, payload: Dict[str, Any], is_new: bool,
                        result: DispatchResult, now: datetime) -> DispatchResult:
        try:
            resolution = self.resolver.resolve(event)
        except UnresolvedTenant as e:
            logger.warning(str(e))
            reason = SKIP_UNRESOLVED_TENANT if is_new else SKIP_DUPLICATE
            self._audit(None, AuditEntry(status='skipped', event_type=event.event_type, payload=payload,
                                         error_message=str(e) if is_new else 'Duplicate event'))
            result.skipped, result.skip_reason = True, reason
            return result

        tenant_id = resolution.tenant_id
        result.tenant_id = tenant_id
        result.strategy = resolution.strategy

        if not is_new:
            self._audit(tenant_id, AuditEntry(status='skipped', event_type=event.event_type, payload=payload,
                                              error_message='Duplicate event'))
            result.skipped, result.skip_reason = True, SKIP_DUPLICATE
            return result

        quota = self.quota.check_quota(tenant_id, 1)
        if not quota.allowed:
            error = QuotaExceeded(tenant_id, quota.usage, quota.limit)
            logger.warning(str(error))
            self._audit(tenant_id, AuditEntry(status='skipped', event_type=event.event_type, payload=payload,
                                              error_message=str(error)))
            result.skipped, result.skip_reason, result.quota_exceeded = True, SKIP_QUOTA_EXCEEDED, True
            return result

        match = self.matcher.match_rules(tenant_id, event.event_type)
        result.rules_matched = len(match)
        if not match:
            self._audit(tenant_id, AuditEntry(status='skipped', event_type=event.event_type, payload=payload,
                                              error_message='No matching rules'))
            result.skipped, result.skip_reason = True, SKIP_NO_RULES
            return result

        with self.uow() as repos:
            channels = repos.channels.get_channels(tenant_id)

        quiet: Optional[QuietCheck] = None
        for rule in match:
            try:
                if quiet is None:
                    quiet = self.quiet_hours.is_quiet_now(tenant_id, now)
                outcome = self._dispatch_rule(event, payload, rule, channels, tenant_id, quiet, now)
            except Exception as e:
                logger.error(f"Rule {rule.id} failed for tenant {tenant_id}: {e}", exc_info=True)
                self._audit(tenant_id, AuditEntry(status='failed', event_type=event.event_type, payload=payload,
                                                  rule_id=rule.id, error_message=str(e)))
                outcome = RuleOutcome(rule_id=rule.id, status='failed', error=str(e))

            result.outcomes.append(outcome)
            if outcome.status == 'sent':
                result.notifications_sent += 1
            elif outcome.status == 'queued':
                result.notifications_queued += 1

        logger.info(
            f"Dispatched {event.event_type} for tenant {tenant_id}: {result.rules_matched} rule(s), "
            f"{result.notifications_sent} sent, {result.notifications_queued} queued"
        )
        return result

    def _dispatch_rule(self, event: InboundEvent, payload: Dict[str, Any], rule: RuleDTO, channels,
                       tenant_id: int, quiet: QuietCheck, now: datetime) -> RuleOutcome:
        if not self._compiled_filter(rule).evaluate(event, now):
            logger.info(f"Rule {rule.id} ({rule.name}) filtered out {event.event_type}")
            return RuleOutcome(rule_id=rule.id, status='filtered')

        channel = self.router.route(event, rule, channels, now)
        if channel is None:
            error = NoChannelAvailable(f"No active channel for rule {rule.id} ({rule.name})")
            self._audit(tenant_id, AuditEntry(status='skipped', event_type=event.event_type, payload=payload,
                                              rule_id=rule.id, error_message=str(error)))
            return RuleOutcome(rule_id=rule.id, status='no_channel', error=str(error))

        if quiet.is_quiet:
            pending = PendingNotification(
                channel_url=channel.webhook_url,
                payload=payload,
                rule_id=rule.id,
                channel_id=channel.id,
                template_mode=rule.template_mode,
                custom_template=rule.custom_template,
            )
            queued = self.quiet_hours.enqueue_delayed(tenant_id, pending, now, check=quiet)
            if queued.queued:
                self._audit(tenant_id, AuditEntry(
                    status='pending',
                    event_type=event.event_type,
                    payload=payload,
                    rule_id=rule.id,
                    channel_id=channel.id,
                    error_message=f"Delayed ({queued.reason}) until {queued.scheduled_for.isoformat()}",
                ))
                return RuleOutcome(rule_id=rule.id, status='queued', channel_id=channel.id,
                                   scheduled_for=queued.scheduled_for)

        attempt = self.delivery.deliver(rule, event, channel, tenant_id)
        delivered_to = attempt.channel or channel

        if attempt.success:
            try:
                self.quota.track_usage(tenant_id, 1)
            except Exception as e:
                logger.error(f"Failed to track usage for tenant {tenant_id}: {e}")
            self._audit(tenant_id, AuditEntry(
                status='success',
                event_type=event.event_type,
                payload=payload,
                rule_id=rule.id,
                channel_id=delivered_to.id,
                formatted_message=attempt.formatted_message,
                response_code=attempt.status_code,
                response_time_ms=attempt.response_time_ms,
                retry_count=(attempt.tier or 1) - 1,
                tier=attempt.tier,
            ))
            return RuleOutcome(rule_id=rule.id, status='sent', channel_id=delivered_to.id,
                               tier=attempt.tier, delivery_status=attempt.status)

        error = attempt.error_message()
        self._audit(tenant_id, AuditEntry(
            status='failed',
            event_type=event.event_type,
            payload=payload,
            rule_id=rule.id,
            channel_id=channel.id,
            error_message=error,
            retry_count=max(0, (attempt.tier or 1) - 1),
            tier=attempt.tier,
        ))
        return RuleOutcome(rule_id=rule.id, status='failed', channel_id=channel.id, tier=attempt.tier,
                           delivery_status=attempt.status, error=error)
