from sqlalchemy import Column, Integer, Text, Boolean, TIMESTAMP, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.sql import text as sql_text
from sqlalchemy.dialects.postgresql import JSONB

from .base import Base


class Rule(Base):
    """
    Tenant-configured mapping of an event pattern plus filter to a notification.

    event_type holds an exact type ("deal.updated"), an entity wildcard
    ("deal.*") or a bare entity ("deal").
    """
    __tablename__ = 'rules'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    event_type = Column(Text, nullable=False)
    filters = Column(JSONB, nullable=False, default={})

    # Explicit routing override, then the channel the rule was created with
    target_channel_id = Column(Integer, ForeignKey('chat_webhooks.id', ondelete='SET NULL'), nullable=True)
    target_webhook_id = Column(Integer, ForeignKey('chat_webhooks.id', ondelete='SET NULL'), nullable=True)

    template_mode = Column(Text, nullable=False, default='simple')  # simple|compact|detailed|custom
    custom_template = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_rules_tenant_name'),
        Index('idx_rules_lookup', 'tenant_id', 'event_type', 'enabled'),
    )
