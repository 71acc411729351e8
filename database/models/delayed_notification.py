from sqlalchemy import Column, Integer, Text, TIMESTAMP, ForeignKey, Index
from sqlalchemy.sql import text as sql_text
from sqlalchemy.dialects.postgresql import JSONB

from .base import Base


class DelayedNotification(Base):
    """
    Notification held back by quiet hours.

    Deleted once redelivered or expired; rescheduled on failed redelivery.
    """
    __tablename__ = 'delayed_notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    rule_id = Column(Integer, ForeignKey('rules.id', ondelete='SET NULL'), nullable=True)
    channel_id = Column(Integer, ForeignKey('chat_webhooks.id', ondelete='SET NULL'), nullable=True)
    channel_url = Column(Text, nullable=False)
    payload = Column(JSONB, nullable=False, default={})  # raw inbound event
    template_mode = Column(Text, nullable=False, default='simple')
    custom_template = Column(Text)
    reason = Column(Text)
    scheduled_for = Column(TIMESTAMP(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"))

    __table_args__ = (
        Index('idx_delayed_due', 'scheduled_for'),
    )
