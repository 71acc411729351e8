from .base import Base
from .tenant import Tenant
from .channel import ChatChannel
from .rule import Rule
from .subscription import Subscription, PLAN_NOTIFICATION_LIMITS
from .audit_log import AuditLog
from .quiet_hours import QuietHours
from .delayed_notification import DelayedNotification

__all__ = [
    'Base',
    'Tenant',
    'ChatChannel',
    'Rule',
    'Subscription',
    'PLAN_NOTIFICATION_LIMITS',
    'AuditLog',
    'QuietHours',
    'DelayedNotification',
]
