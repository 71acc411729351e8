from database.repositories.base import BaseRepository
from database.repositories.tenant import TenantRepository
from database.repositories.rule import RuleRepository
from database.repositories.channel import ChannelRepository
from database.repositories.subscription import SubscriptionRepository
from database.repositories.audit_log import AuditLogRepository
from database.repositories.quiet_hours import QuietHoursRepository
from database.repositories.delayed_notification import DelayedNotificationRepository

__all__ = [
    'BaseRepository',
    'TenantRepository',
    'RuleRepository',
    'ChannelRepository',
    'SubscriptionRepository',
    'AuditLogRepository',
    'QuietHoursRepository',
    'DelayedNotificationRepository',
]
