from sqlalchemy import Column, Integer, Text, Boolean, TIMESTAMP, ForeignKey, Index
from sqlalchemy.sql import text as sql_text

from .base import Base


class ChatChannel(Base):
    """Incoming chat webhook a tenant has registered as a notification target."""
    __tablename__ = 'chat_webhooks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    webhook_url = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"))

    __table_args__ = (
        Index('idx_chat_webhooks_tenant_active', 'tenant_id', 'is_active'),
    )
