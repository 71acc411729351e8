#!/usr/bin/env python3
"""
Tests for tenant resolution strategies.
"""

import unittest
from unittest.mock import Mock

from sqlalchemy.exc import OperationalError

from core.exceptions import UnresolvedTenant
from dispatch.dto import ChannelDTO, RuleDTO, TenantDTO
from dispatch.events import InboundEvent
from dispatch.tenant_resolver import (
    CompanyMappingStrategy,
    ResolutionStrategy,
    TenantResolver,
)
from tests.fakes import FakeStore


def event(**kwargs):
    body = {'event': 'deal.updated', 'current': {'id': 1}}
    body.update(kwargs)
    return InboundEvent.from_webhook(body)


class TestTenantResolver(unittest.TestCase):

    def setUp(self):
        self.store = FakeStore()
        self.resolver = TenantResolver(self.store.uow)

    def _tenant_with_config(self, tenant_id, company_id=None, status='active'):
        self.store.tenants[tenant_id] = TenantDTO(id=tenant_id, status=status, pipedrive_company_id=company_id)
        self.store.rules.append(RuleDTO(id=tenant_id * 10, tenant_id=tenant_id, name='r', event_type='deal.*'))
        self.store.channels.append(ChannelDTO(id=tenant_id * 100, tenant_id=tenant_id, name='c',
                                              webhook_url='https://chat.example.com/x'))

    def test_company_mapping(self):
        self._tenant_with_config(1, company_id='123')
        resolution = self.resolver.resolve(event(company_id=123))
        self.assertEqual(resolution.tenant_id, 1)
        self.assertEqual(resolution.strategy, 'company_mapping')

    def test_account_mapping_by_domain_auto_maps_company(self):
        self._tenant_with_config(2)
        self.store.api_domains['acme'] = 2

        resolution = self.resolver.resolve(event(company_id=777, meta={'host': 'acme.pipedrive.com'}))

        self.assertEqual(resolution.strategy, 'account_mapping')
        self.assertEqual(self.store.tenants[2].pipedrive_company_id, '777')
        # next event hits the cheaper strategy
        self.assertEqual(self.resolver.resolve(event(company_id=777)).strategy, 'company_mapping')

    def test_account_mapping_by_user_id(self):
        self._tenant_with_config(2, company_id='999')
        self.store.user_ids['42'] = 2
        resolution = self.resolver.resolve(event(company_id=777, user_id=42))
        self.assertEqual(resolution.tenant_id, 2)

    def test_auto_mapping_can_be_disabled(self):
        self._tenant_with_config(2)
        self.store.api_domains['acme'] = 2
        resolver = TenantResolver(self.store.uow, auto_map_company=False)
        resolver.resolve(event(company_id=777, meta={'company_domain': 'acme'}))
        self.assertIsNone(self.store.tenants[2].pipedrive_company_id)

    def test_single_unmapped_tenant_heuristic(self):
        self._tenant_with_config(3)
        resolution = self.resolver.resolve(event(company_id=555))
        self.assertEqual(resolution.tenant_id, 3)
        self.assertEqual(resolution.strategy, 'single_tenant_heuristic')

    def test_heuristic_auto_maps_company_for_later_events(self):
        self._tenant_with_config(3)
        self.resolver.resolve(event(company_id=555))
        self.assertEqual(self.store.tenants[3].pipedrive_company_id, '555')

        # a second tenant no longer makes the company ambiguous
        self._tenant_with_config(4)
        resolution = self.resolver.resolve(event(company_id=555))
        self.assertEqual(resolution.tenant_id, 3)
        self.assertEqual(resolution.strategy, 'company_mapping')

    def test_heuristic_auto_mapping_can_be_disabled(self):
        self._tenant_with_config(3)
        resolver = TenantResolver(self.store.uow, auto_map_company=False)
        self.assertEqual(resolver.resolve(event(company_id=555)).tenant_id, 3)
        self.assertIsNone(self.store.tenants[3].pipedrive_company_id)

    def test_heuristic_refuses_to_guess_between_tenants(self):
        self._tenant_with_config(3)
        self._tenant_with_config(4)
        with self.assertRaises(UnresolvedTenant) as ctx:
            self.resolver.resolve(event(company_id=555))
        self.assertEqual(ctx.exception.company_id, '555')

    def test_heuristic_ignores_tenant_without_channels(self):
        self.store.tenants[3] = TenantDTO(id=3)
        with self.assertRaises(UnresolvedTenant):
            self.resolver.resolve(event(company_id=555))

    def test_configured_default_tenant(self):
        self._tenant_with_config(3)
        self._tenant_with_config(4)
        resolver = TenantResolver(self.store.uow, default_tenant_id=4)
        self.assertEqual(resolver.resolve(event(company_id=555)).tenant_id, 4)
        self.assertEqual(self.store.tenants[4].pipedrive_company_id, '555')

    def test_inactive_tenant_is_skipped(self):
        self._tenant_with_config(1, company_id='123', status='suspended')
        with self.assertRaises(UnresolvedTenant):
            self.resolver.resolve(event(company_id=123))

    def test_database_error_moves_to_next_strategy(self):
        broken = Mock(spec=ResolutionStrategy)
        broken.name = 'broken'
        broken.find.side_effect = OperationalError('SELECT 1', {}, Exception('connection lost'))
        self._tenant_with_config(1, company_id='123')

        resolver = TenantResolver(self.store.uow, strategies=[broken, CompanyMappingStrategy()])
        self.assertEqual(resolver.resolve(event(company_id=123)).tenant_id, 1)


if __name__ == '__main__':
    unittest.main()
