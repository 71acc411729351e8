from dataclasses import dataclass
from typing import Optional

from core.config_loader import AppConfig
from database.uow import UnitOfWork, dispatch_uow
from dispatch.circuit_breaker import CircuitBreaker
from dispatch.dedup import Deduplicator
from dispatch.delivery import (
    AlternateChannelTier,
    DeliveryPipeline,
    EmergencyBypassTier,
    PrimaryTier,
    SimplifiedRetryTier,
)
from dispatch.dispatcher import NotificationDispatcher
from dispatch.quiet_hours import DelayedQueueSweeper, QuietHoursGate
from dispatch.quota import QuotaGate
from dispatch.router import ChannelRouter
from dispatch.rule_matcher import RuleMatcher
from dispatch.tenant_resolver import TenantResolver
from notification.channels import BareChatSender, ChatClient, MessageSender
from notification.tracker import AuditLogService, ReliabilityAlerter


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    The deduplicator and circuit breaker are the only in-process shared
    state; both live here so every dispatch in a process sees the same
    instances. DB access is obtained per call via the unit of work.
    """
    config: AppConfig
    dedup: Deduplicator
    breaker: CircuitBreaker
    chat_client: MessageSender
    audit: AuditLogService
    dispatcher: NotificationDispatcher
    delayed_sweeper: DelayedQueueSweeper

    @classmethod
    def build(
        cls,
        config: AppConfig,
        uow: UnitOfWork = dispatch_uow,
        chat_client: Optional[MessageSender] = None,
        emergency_sender: Optional[MessageSender] = None
    ) -> "AppContext":
        """Build an AppContext from config.

        Args:
            config: Loaded application configuration
            uow: Unit-of-work factory yielding DispatchRepositories
            chat_client: Sender for tiers 1-3 (defaults to a pooled ChatClient)
            emergency_sender: Sender for tier 4 (defaults to a BareChatSender)

        Returns:
            Fully wired AppContext instance (no DB session attached)
        """
        delivery_config = config.delivery

        dedup = Deduplicator(
            ttl_seconds=config.dedup.ttl_seconds,
            sweep_interval_seconds=config.dedup.sweep_interval_seconds,
        )
        breaker = CircuitBreaker(
            failure_threshold=config.circuit_breaker.failure_threshold,
            cooldown_seconds=config.circuit_breaker.cooldown_seconds,
        )
        chat_client = chat_client or ChatClient(
            timeout=delivery_config.request_timeout_seconds,
            user_agent=delivery_config.user_agent,
        )
        emergency_sender = emergency_sender or BareChatSender(
            timeout=delivery_config.emergency_timeout_seconds,
            user_agent=delivery_config.user_agent,
        )

        audit = AuditLogService(uow)
        alerter = ReliabilityAlerter(audit)
        resolution = config.tenant_resolution

        def build_resolver() -> TenantResolver:
            return TenantResolver(
                uow,
                default_tenant_id=resolution.default_tenant_id,
                auto_map_company=resolution.auto_map_company,
            )

        quota = QuotaGate(
            uow,
            enforce=config.quota.enforce,
            warning_threshold=config.quota.warning_threshold,
            critical_threshold=config.quota.critical_threshold,
        )

        delivery = DeliveryPipeline(
            tiers=[
                PrimaryTier(chat_client),
                SimplifiedRetryTier(chat_client, backoff_seconds=delivery_config.retry_backoff_seconds),
                AlternateChannelTier(chat_client, uow),
                EmergencyBypassTier(emergency_sender, build_resolver, uow),
            ],
            breaker=breaker,
            alerter=alerter,
        )

        dispatcher = NotificationDispatcher(
            dedup=dedup,
            resolver=build_resolver(),
            quota=quota,
            matcher=RuleMatcher(uow),
            router=ChannelRouter(),
            quiet_hours=QuietHoursGate(uow),
            delivery=delivery,
            audit_sink=audit,
            uow=uow,
        )

        delayed = config.delayed_queue
        delayed_sweeper = DelayedQueueSweeper(
            uow,
            delivery=delivery,
            quota=quota,
            audit_sink=audit,
            batch_size=delayed.batch_size,
            retry_delay_minutes=delayed.retry_delay_minutes,
            max_attempts=delayed.max_attempts,
            max_age_hours=delayed.max_age_hours,
            sweep_interval_seconds=delayed.sweep_interval_seconds,
        )

        return cls(
            config=config,
            dedup=dedup,
            breaker=breaker,
            chat_client=chat_client,
            audit=audit,
            dispatcher=dispatcher,
            delayed_sweeper=delayed_sweeper,
        )

    def start_background(self) -> None:
        self.dedup.start_sweeper()
        self.delayed_sweeper.start()

    def stop_background(self) -> None:
        self.delayed_sweeper.stop()
        self.dedup.stop_sweeper()
