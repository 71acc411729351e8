#!/usr/bin/env python3
"""
Multi-tier delivery.

One matched rule, one routed channel: try progressively more conservative
ways to get the message out and stop at the first that works.

    1 primary           rule's template to the routed channel
    2 simplified_retry  short backoff, same channel, simple template
    3 alternate_channel any other active channel of the tenant, simple template
    4 emergency_bypass  tenant and channel recomputed from the raw event in a
                        fresh session, bare requests.post, simple template

Every tier runs through the shared circuit breaker. A rejected tier ends the
sequence with CIRCUIT_OPEN; exhausting all tiers gives ALL_FAILED.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from core.exceptions import AllTiersFailed, CircuitOpen, NoAlternateChannel, NoChannelAvailable
from database.uow import UnitOfWork
from dispatch.circuit_breaker import CircuitBreaker
from dispatch.dto import ChannelDTO, RuleDTO
from dispatch.events import InboundEvent

logger = logging.getLogger(__name__)

SUCCESS = 'SUCCESS'
ALL_FAILED = 'ALL_FAILED'
CIRCUIT_OPEN = 'CIRCUIT_OPEN'


@dataclass
class DeliveryContext:
    rule: RuleDTO
    event: InboundEvent
    channel: ChannelDTO
    tenant_id: int
    # Channel the successful tier actually posted to
    delivered_channel: Optional[ChannelDTO] = None
    template_mode: Optional[str] = None


@dataclass
class DeliveryAttemptResult:
    success: bool
    status: str
    tier: Optional[int] = None
    tier_name: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    message_id: Optional[str] = None
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    channel: Optional[ChannelDTO] = None
    template_mode: Optional[str] = None
    formatted_message: Optional[dict] = None

    def error_message(self) -> str:
        if self.status == ALL_FAILED:
            return str(AllTiersFailed(self.errors))
        return f"{self.status}: " + '; '.join(self.errors)


class DeliveryTier(ABC):
    number: int = 0
    name: str = ""

    @abstractmethod
    def attempt(self, context: DeliveryContext):
        """Send once. Returns a SendResult; raises on failure."""
        pass

    def _send(self, sender, context: DeliveryContext, channel: ChannelDTO, template_mode: str,
              custom_template: Optional[str] = None):
        result = sender.send_message(
            channel.webhook_url,
            context.event,
            template_mode,
            custom_template,
            context.tenant_id,
        )
        context.delivered_channel = channel
        context.template_mode = template_mode
        return result


class PrimaryTier(DeliveryTier):
    number = 1
    name = 'primary'

    def __init__(self, sender):
        self.sender = sender

    def attempt(self, context: DeliveryContext):
        rule = context.rule
        return self._send(self.sender, context, context.channel, rule.template_mode, rule.custom_template)


class SimplifiedRetryTier(DeliveryTier):
    number = 2
    name = 'simplified_retry'

    def __init__(self, sender, backoff_seconds: float = 1.0, sleep: Callable[[float], None] = time.sleep):
        self.sender = sender
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def attempt(self, context: DeliveryContext):
        if self.backoff_seconds > 0:
            self._sleep(self.backoff_seconds)
        return self._send(self.sender, context, context.channel, 'simple')


class AlternateChannelTier(DeliveryTier):
    number = 3
    name = 'alternate_channel'

    def __init__(self, sender, uow: UnitOfWork):
        self.sender = sender
        self.uow = uow

    def attempt(self, context: DeliveryContext):
        with self.uow() as repos:
            channels = repos.channels.get_channels(context.tenant_id)

        alternates = [c for c in channels if c.is_active and c.id != context.channel.id]
        if not alternates:
            raise NoAlternateChannel(f"Tenant {context.tenant_id} has no alternate active channel")

        channel = alternates[0]
        logger.info(f"Trying alternate channel {channel.name} for rule {context.rule.id}")
        return self._send(self.sender, context, channel, 'simple')


class EmergencyBypassTier(DeliveryTier):
    """
    Last resort: re-derive everything from the raw event.

    Nothing computed earlier in the dispatch is trusted here. The tenant is
    resolved again and its channels reloaded through a resolver and unit of
    work built for this tier alone.
    """
    number = 4
    name = 'emergency_bypass'

    def __init__(self, sender, resolver_factory: Callable[[], object], uow: UnitOfWork):
        self.sender = sender
        self.resolver_factory = resolver_factory
        self.uow = uow

    def attempt(self, context: DeliveryContext):
        resolution = self.resolver_factory().resolve(context.event)
        with self.uow() as repos:
            channels = [c for c in repos.channels.get_channels(resolution.tenant_id) if c.is_active]

        if not channels:
            raise NoChannelAvailable(f"Emergency bypass found no active channel for tenant {resolution.tenant_id}")

        preferred_ids = (context.rule.target_channel_id, context.rule.default_channel_id, context.channel.id)
        channel = next((c for pid in preferred_ids for c in channels if pid is not None and c.id == pid),
                       channels[0])
        logger.warning(f"Emergency bypass delivery for tenant {resolution.tenant_id} via {channel.name}")
        return self._send(self.sender, context, channel, 'simple')


class DeliveryPipeline:
    def __init__(self, tiers: Sequence[DeliveryTier], breaker: CircuitBreaker, alerter=None):
        self.tiers = list(tiers)
        self.breaker = breaker
        self.alerter = alerter

    def deliver(self, rule: RuleDTO, event: InboundEvent, channel: ChannelDTO, tenant_id: int) -> DeliveryAttemptResult:
        context = DeliveryContext(rule=rule, event=event, channel=channel, tenant_id=tenant_id)
        errors: List[str] = []
        last_tier: Optional[DeliveryTier] = None

        for tier in self.tiers:
            try:
                self.breaker.before_call()
            except CircuitOpen as e:
                errors.append(f"tier {tier.number} ({tier.name}): {e}")
                logger.error(f"Circuit open; abandoning delivery for rule {rule.id} before tier {tier.number}")
                return DeliveryAttemptResult(
                    success=False,
                    status=CIRCUIT_OPEN,
                    tier=last_tier.number if last_tier else None,
                    tier_name=last_tier.name if last_tier else None,
                    errors=errors,
                    channel=channel,
                )

            last_tier = tier
            try:
                send_result = tier.attempt(context)
            except Exception as e:
                self.breaker.record_failure()
                errors.append(f"tier {tier.number} ({tier.name}): {e}")
                logger.warning(f"Delivery tier {tier.number} ({tier.name}) failed for rule {rule.id}: {e}")
                continue

            self.breaker.record_success()
            if tier.number >= 2 and self.alerter is not None:
                self.alerter.fallback_used(
                    tenant_id, tier.number, tier.name, errors,
                    rule_id=rule.id,
                    channel_id=context.delivered_channel.id if context.delivered_channel else None,
                    event_type=event.event_type,
                )

            return DeliveryAttemptResult(
                success=True,
                status=SUCCESS,
                tier=tier.number,
                tier_name=tier.name,
                errors=errors,
                message_id=send_result.message_id,
                status_code=send_result.status_code,
                response_time_ms=send_result.response_time_ms,
                channel=context.delivered_channel or channel,
                template_mode=context.template_mode,
                formatted_message=send_result.message,
            )

        logger.error(f"All delivery tiers failed for rule {rule.id} tenant {tenant_id}")
        return DeliveryAttemptResult(
            success=False,
            status=ALL_FAILED,
            tier=last_tier.number if last_tier else None,
            tier_name=last_tier.name if last_tier else None,
            errors=errors,
            channel=channel,
        )
