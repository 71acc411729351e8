from sqlalchemy import Column, Integer, Text, TIMESTAMP, Index, func
from sqlalchemy.sql import text as sql_text

from .base import Base


class Tenant(Base):
    """
    An organization account. Owned by the account service; the dispatch
    pipeline only reads it, apart from auto-mapping a CRM company id.
    """
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_name = Column(Text, nullable=False, default='')
    status = Column(Text, nullable=False, default='active')  # active|inactive
    plan_tier = Column(Text, nullable=False, default='free')

    # CRM identifiers used by tenant resolution
    pipedrive_company_id = Column(Text, nullable=True)
    pipedrive_user_id = Column(Text, nullable=True)
    api_domain = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=sql_text("timezone('UTC', now())"), onupdate=func.now())

    __table_args__ = (
        Index('idx_tenants_company', 'pipedrive_company_id'),
        Index('idx_tenants_user', 'pipedrive_user_id'),
        Index('idx_tenants_domain', 'api_domain'),
    )
