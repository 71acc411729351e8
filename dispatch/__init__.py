"""
Dispatch pipeline

Turns one inbound CRM event into zero or more chat notifications:
dedup, tenant resolution, quota, rule matching, filters, routing, quiet
hours, multi-tier delivery and auditing.
"""

from dispatch.events import InboundEvent
from dispatch.dispatcher import NotificationDispatcher, DispatchResult, RuleOutcome

__all__ = [
    'InboundEvent',
    'NotificationDispatcher',
    'DispatchResult',
    'RuleOutcome',
]
