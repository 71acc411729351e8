import logging
from typing import Optional
from sqlalchemy import select, update, func

from database.models import Subscription, PLAN_NOTIFICATION_LIMITS
from database.repositories.base import BaseRepository
from dispatch.dto import UsageDTO

logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository):
    def get_usage(self, tenant_id: int) -> Optional[UsageDTO]:
        stmt = select(Subscription).where(Subscription.tenant_id == tenant_id)
        subscription = self.db.execute(stmt).scalar_one_or_none()
        if subscription is None:
            return None

        plan_tier = subscription.plan_tier or 'free'
        if subscription.notification_limit is not None:
            limit = subscription.notification_limit
        else:
            # Unknown tiers get the free budget
            limit = PLAN_NOTIFICATION_LIMITS.get(plan_tier, PLAN_NOTIFICATION_LIMITS['free'])

        return UsageDTO(
            tenant_id=tenant_id,
            plan_tier=plan_tier,
            usage=subscription.monthly_notification_count or 0,
            limit=limit,
        )

    def increment_usage(self, tenant_id: int, count: int = 1) -> Optional[int]:
        """
        Atomically add `count` to the period usage and return the new total.

        The increment is evaluated by the database, so concurrent workers
        never lose updates.
        """
        stmt = (
            update(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .values(
                monthly_notification_count=Subscription.monthly_notification_count + count,
                updated_at=func.now()
            )
            .returning(Subscription.monthly_notification_count)
        )
        new_count = self.db.execute(stmt).scalar_one_or_none()
        if new_count is None:
            logger.warning(f"No subscription row for tenant {tenant_id}; usage not tracked")
        return new_count
