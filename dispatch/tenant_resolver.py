"""
Tenant resolution.

Maps an inbound CRM event to the tenant that owns it. Strategies run in order
and the first one returning an active tenant wins:

1. company_mapping          - tenant whose CRM company id equals the event's
2. account_mapping          - by API domain, then by CRM user id; the tenant is
                              auto-mapped to the event's company id
3. single_tenant_heuristic  - configured default tenant, else the only active
                              unmapped tenant that has rules and channels;
                              an unmapped tenant found this way is auto-mapped
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import UnresolvedTenant
from database.uow import UnitOfWork
from dispatch.dto import TenantDTO
from dispatch.events import InboundEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantResolution:
    tenant_id: int
    strategy: str


class ResolutionStrategy(ABC):
    name: str = ""

    @abstractmethod
    def find(self, event: InboundEvent, uow: UnitOfWork) -> Optional[TenantDTO]:
        pass


class CompanyMappingStrategy(ResolutionStrategy):
    name = "company_mapping"

    def find(self, event: InboundEvent, uow: UnitOfWork) -> Optional[TenantDTO]:
        if not event.company_id:
            return None
        with uow() as repos:
            return repos.tenants.get_by_company_id(event.company_id)


class AccountMappingStrategy(ResolutionStrategy):
    name = "account_mapping"

    def __init__(self, auto_map_company: bool = True):
        self.auto_map_company = auto_map_company

    def find(self, event: InboundEvent, uow: UnitOfWork) -> Optional[TenantDTO]:
        with uow() as repos:
            tenant = None
            if event.api_domain:
                tenant = repos.tenants.get_by_api_domain(event.api_domain)
            if tenant is None and event.user_id:
                tenant = repos.tenants.get_by_user_id(event.user_id)

            if (tenant is not None and tenant.is_active and self.auto_map_company
                    and event.company_id and tenant.pipedrive_company_id != event.company_id):
                repos.tenants.update_company_id(tenant.id, event.company_id)
            return tenant


class SingleTenantHeuristicStrategy(ResolutionStrategy):
    name = "single_tenant_heuristic"

    def __init__(self, default_tenant_id: Optional[int] = None, auto_map_company: bool = True):
        self.default_tenant_id = default_tenant_id
        self.auto_map_company = auto_map_company

    def find(self, event: InboundEvent, uow: UnitOfWork) -> Optional[TenantDTO]:
        with uow() as repos:
            if self.default_tenant_id is not None:
                tenant = repos.tenants.get_by_id(self.default_tenant_id)
            else:
                candidates = repos.tenants.find_unmapped_active_tenants(limit=2)
                if len(candidates) > 1:
                    logger.warning(
                        f"Multiple unmapped tenants could own company {event.company_id}; refusing to guess"
                    )
                tenant = candidates[0] if len(candidates) == 1 else None

            # Later events from this company then resolve by company_mapping
            if (tenant is not None and tenant.is_active and self.auto_map_company
                    and event.company_id and not tenant.pipedrive_company_id):
                repos.tenants.update_company_id(tenant.id, event.company_id)
            return tenant


class TenantResolver:
    """Runs resolution strategies in order."""

    def __init__(self, uow: UnitOfWork, strategies: Optional[List[ResolutionStrategy]] = None,
                 default_tenant_id: Optional[int] = None, auto_map_company: bool = True):
        self.uow = uow
        self.strategies = strategies or [
            CompanyMappingStrategy(),
            AccountMappingStrategy(auto_map_company=auto_map_company),
            SingleTenantHeuristicStrategy(default_tenant_id=default_tenant_id, auto_map_company=auto_map_company),
        ]

    def resolve(self, event: InboundEvent) -> TenantResolution:
        for strategy in self.strategies:
            try:
                tenant = strategy.find(event, self.uow)
            except SQLAlchemyError as e:
                logger.error(f"Tenant strategy {strategy.name} failed: {e}")
                continue

            if tenant is None:
                continue
            if not tenant.is_active:
                logger.info(f"Strategy {strategy.name} found inactive tenant {tenant.id}; skipping")
                continue

            logger.info(f"Resolved company {event.company_id} to tenant {tenant.id} via {strategy.name}")
            return TenantResolution(tenant_id=tenant.id, strategy=strategy.name)

        raise UnresolvedTenant(
            f"No tenant found for company_id={event.company_id} event={event.event_type}",
            company_id=event.company_id
        )
