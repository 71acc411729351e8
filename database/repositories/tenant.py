import logging
from typing import List, Optional
from sqlalchemy import select, update, exists, or_, func

from database.models import Tenant, Rule, ChatChannel
from database.repositories.base import BaseRepository
from dispatch.dto import TenantDTO

logger = logging.getLogger(__name__)


def _to_dto(tenant: Tenant) -> TenantDTO:
    return TenantDTO(
        id=tenant.id,
        status=tenant.status,
        plan_tier=tenant.plan_tier,
        company_name=tenant.company_name or '',
        pipedrive_company_id=tenant.pipedrive_company_id,
    )


class TenantRepository(BaseRepository):
    def get_by_id(self, tenant_id: int) -> Optional[TenantDTO]:
        tenant = self.db.get(Tenant, tenant_id)
        return _to_dto(tenant) if tenant else None

    def _first(self, *criteria) -> Optional[TenantDTO]:
        stmt = select(Tenant).where(*criteria).order_by(Tenant.created_at.asc()).limit(1)
        tenant = self.db.execute(stmt).scalar_one_or_none()
        return _to_dto(tenant) if tenant else None

    def get_by_company_id(self, company_id: str) -> Optional[TenantDTO]:
        if not company_id:
            return None
        return self._first(Tenant.pipedrive_company_id == str(company_id))

    def get_by_api_domain(self, api_domain: str) -> Optional[TenantDTO]:
        if not api_domain:
            return None
        return self._first(func.lower(Tenant.api_domain) == api_domain.lower())

    def get_by_user_id(self, user_id: str) -> Optional[TenantDTO]:
        if not user_id:
            return None
        return self._first(Tenant.pipedrive_user_id == str(user_id))

    def find_unmapped_active_tenants(self, limit: int = 2) -> List[TenantDTO]:
        """
        Active tenants with no CRM company mapping yet that have at least one
        enabled rule and one active channel.
        """
        has_rule = exists().where(Rule.tenant_id == Tenant.id, Rule.enabled.is_(True))
        has_channel = exists().where(ChatChannel.tenant_id == Tenant.id, ChatChannel.is_active.is_(True))
        stmt = (
            select(Tenant)
            .where(
                Tenant.status == 'active',
                or_(Tenant.pipedrive_company_id.is_(None), Tenant.pipedrive_company_id == ''),
                has_rule,
                has_channel,
            )
            .order_by(Tenant.created_at.asc())
            .limit(limit)
        )
        return [_to_dto(t) for t in self.db.execute(stmt).scalars().all()]

    def update_company_id(self, tenant_id: int, company_id: str) -> None:
        self.db.execute(
            update(Tenant)
            .where(Tenant.id == tenant_id)
            .values(pipedrive_company_id=str(company_id), updated_at=func.now())
        )
        logger.info(f"Mapped tenant {tenant_id} to company_id {company_id}")
