from sqlalchemy import Column, Integer, Text, TIMESTAMP, ForeignKey, Index
from sqlalchemy.sql import text as sql_text
from sqlalchemy.dialects.postgresql import JSONB

from .base import Base


class AuditLog(Base):
    """
    Outcome of every dispatch attempt.

    status: success | failed | pending | skipped
    """
    __tablename__ = 'logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    rule_id = Column(Integer, ForeignKey('rules.id', ondelete='SET NULL'), nullable=True)
    webhook_id = Column(Integer, ForeignKey('chat_webhooks.id', ondelete='SET NULL'), nullable=True)
    event_type = Column(Text)
    payload = Column(JSONB, default={})
    formatted_message = Column(JSONB, default={})
    status = Column(Text, nullable=False)
    error_message = Column(Text)
    response_code = Column(Integer)
    response_time_ms = Column(Integer)
    retry_count = Column(Integer, default=0)
    delivery_tier = Column(Integer)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"))

    __table_args__ = (
        Index('idx_logs_tenant_created', 'tenant_id', 'created_at'),
        Index('idx_logs_status', 'status'),
    )
