"""
Pytest configuration and fixtures.

This file provides pytest-specific configuration and fixtures.
For in-memory repository and sender fakes, see tests/fakes.py
"""

from datetime import datetime, timezone

import pytest

from dispatch.dto import ChannelDTO, RuleDTO, TenantDTO, UsageDTO
from tests.fakes import FakeSender, FakeStore


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "db: marks tests as requiring database (deselect with '-m \"not db\"')"
    )


# Wednesday, mid-morning UTC: inside business hours, outside any quiet window
WEDNESDAY_10AM = datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return WEDNESDAY_10AM


@pytest.fixture
def store(now):
    """A single active tenant (id 1, company 123) with one rule and one channel."""
    store = FakeStore(now=now)
    store.tenants[1] = TenantDTO(id=1, status='active', plan_tier='free',
                                 company_name='Acme', pipedrive_company_id='123')
    store.channels.append(ChannelDTO(id=10, tenant_id=1, name='General', webhook_url='https://chat.example.com/general'))
    store.rules.append(RuleDTO(id=100, tenant_id=1, name='Deal updates', event_type='deal.updated',
                               default_channel_id=10))
    store.usage[1] = UsageDTO(tenant_id=1, plan_tier='free', usage=0, limit=100)
    return store


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def deal_event():
    return {
        'event': 'deal.updated',
        'company_id': 123,
        'user_id': 7,
        'current': {'id': 555, 'title': 'Big Deal', 'value': 500, 'currency': 'USD',
                    'status': 'open', 'stage_id': 2, 'probability': 40},
        'previous': {'id': 555, 'stage_id': 1},
        'meta': {'company_domain': 'acme'},
        'raw_meta': {'correlation_id': 'corr-1', 'entity_id': 555},
    }
