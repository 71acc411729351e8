from sqlalchemy import Column, Integer, Text, Boolean, TIMESTAMP, ForeignKey, func
from sqlalchemy.sql import text as sql_text
from sqlalchemy.dialects.postgresql import JSONB

from .base import Base


class QuietHours(Base):
    """Tenant suppression window. Times are HH:MM in the tenant's timezone."""
    __tablename__ = 'quiet_hours'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False, unique=True)
    timezone = Column(Text, nullable=False, default='UTC')
    start_time = Column(Text, nullable=False, default='18:00')
    end_time = Column(Text, nullable=False, default='09:00')
    weekends_enabled = Column(Boolean, nullable=False, default=True)
    holidays = Column(JSONB, nullable=False, default=[])
    enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"), onupdate=func.now())
