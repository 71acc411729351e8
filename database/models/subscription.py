from sqlalchemy import Column, Integer, Text, TIMESTAMP, ForeignKey, func
from sqlalchemy.sql import text as sql_text

from .base import Base

# Monthly notification budgets per plan; None means unlimited
PLAN_NOTIFICATION_LIMITS = {
    'free': 100,
    'starter': 1000,
    'pro': 10000,
    'team': None,
}


class Subscription(Base):
    """
    Per-tenant billing-period usage counter.

    monthly_notification_count is reset externally at period boundaries and
    only ever incremented in SQL by the dispatch pipeline.
    """
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, unique=True)
    plan_tier = Column(Text, nullable=False, default='free')
    status = Column(Text, nullable=False, default='active')
    monthly_notification_count = Column(Integer, nullable=False, default=0)
    notification_limit = Column(Integer, nullable=True)  # overrides the plan default
    current_period_end = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"), onupdate=func.now())
