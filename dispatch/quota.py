import logging
from dataclasses import dataclass
from typing import Optional

from database.uow import UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    usage: int
    limit: Optional[int]  # None means unlimited
    percentage: float
    warning_level: str  # normal | warning | critical | error
    plan_tier: Optional[str] = None


class QuotaGate:
    """
    Monthly notification budget per tenant.

    Lookups fail closed: a missing subscription row or a database error
    denies the notification.
    """

    def __init__(self, uow: UnitOfWork, enforce: bool = True,
                 warning_threshold: float = 75.0, critical_threshold: float = 90.0):
        self.uow = uow
        self.enforce = enforce
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold

    def _warning_level(self, percentage: float) -> str:
        if percentage >= self.critical_threshold:
            return 'critical'
        if percentage >= self.warning_threshold:
            return 'warning'
        return 'normal'

    def check_quota(self, tenant_id: int, n: int = 1) -> QuotaCheck:
        if not self.enforce:
            return QuotaCheck(allowed=True, usage=0, limit=None, percentage=0.0,
                              warning_level='normal', plan_tier=None)

        try:
            with self.uow() as repos:
                usage = repos.subscriptions.get_usage(tenant_id)
        except Exception as e:
            logger.error(f"Quota lookup failed for tenant {tenant_id}: {e}")
            return QuotaCheck(allowed=False, usage=0, limit=0, percentage=100.0, warning_level='error')

        if usage is None:
            logger.error(f"No subscription for tenant {tenant_id}; denying notification")
            return QuotaCheck(allowed=False, usage=0, limit=0, percentage=100.0, warning_level='error')

        if usage.limit is None:
            return QuotaCheck(allowed=True, usage=usage.usage, limit=None, percentage=0.0,
                              warning_level='normal', plan_tier=usage.plan_tier)

        percentage = (usage.usage / usage.limit * 100.0) if usage.limit > 0 else 100.0
        level = self._warning_level(percentage)
        allowed = usage.usage + n <= usage.limit

        if level != 'normal':
            logger.warning(
                f"Tenant {tenant_id} at {percentage:.1f}% of {usage.plan_tier} quota "
                f"({usage.usage}/{usage.limit})"
            )

        return QuotaCheck(
            allowed=allowed,
            usage=usage.usage,
            limit=usage.limit,
            percentage=round(percentage, 2),
            warning_level=level,
            plan_tier=usage.plan_tier,
        )

    def track_usage(self, tenant_id: int, n: int = 1) -> Optional[int]:
        with self.uow() as repos:
            new_count = repos.subscriptions.increment_usage(tenant_id, n)
        logger.debug(f"Tenant {tenant_id} usage now {new_count}")
        return new_count
