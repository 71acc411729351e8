#!/usr/bin/env python3
"""
Channel routing.

Picks the chat channel for one matched rule:

1. the rule's explicit target channel, when active
2. keyword heuristics over channel name/description (deal value,
   probability, event action, after-hours, owner)
3. the rule's originally configured channel, when active
4. the first active channel
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.utils import ensure_utc, to_number
from dispatch.dto import ChannelDTO, RuleDTO
from dispatch.events import InboundEvent

logger = logging.getLogger(__name__)

HIGH_VALUE_THRESHOLD = 50000
MEDIUM_VALUE_THRESHOLD = 10000
HOT_PROBABILITY_THRESHOLD = 90
BUSINESS_DAY_START_HOUR = 9
BUSINESS_DAY_END_HOUR = 18

CHANNEL_KEYWORDS: Dict[str, List[str]] = {
    'high_value': ['executive', 'vip', 'high-value', 'leadership'],
    'medium_value': ['manager', 'sales-manager', 'medium-value'],
    'hot': ['urgent', 'closing', 'hot-deals', 'pipeline'],
    'won': ['wins', 'celebrations', 'closed-won', 'success'],
    'lost': ['lost-deals', 'analysis', 'review'],
    'new': ['leads', 'new-business', 'prospects', 'new-deals'],
    'after_hours': ['alerts', '24-7', 'urgent', 'after-hours'],
}


def find_channel_by_keywords(channels: Iterable[ChannelDTO], keywords: Sequence[str]) -> Optional[ChannelDTO]:
    """First active channel whose name or description contains a keyword, in keyword order."""
    channels = [c for c in channels if c.is_active]
    for keyword in keywords:
        needle = keyword.lower()
        for channel in channels:
            if needle in (channel.name or '').lower() or needle in (channel.description or '').lower():
                return channel
    return None


def _by_id(channels: Iterable[ChannelDTO], channel_id: Optional[int]) -> Optional[ChannelDTO]:
    if channel_id is None:
        return None
    for channel in channels:
        if channel.id == channel_id and channel.is_active:
            return channel
    return None


class ChannelRouter:
    def route(
        self,
        event: InboundEvent,
        rule: RuleDTO,
        available_channels: Sequence[ChannelDTO],
        now: Optional[datetime] = None
    ) -> Optional[ChannelDTO]:
        active = [c for c in available_channels if c.is_active]
        if not active:
            logger.warning(f"No active channels for rule {rule.id} ({rule.name})")
            return None

        target = _by_id(active, rule.target_channel_id)
        if target is not None:
            logger.info(f"Routing rule {rule.id} to its target channel {target.name}")
            return target

        heuristic = self._heuristic(event, active, ensure_utc(now))
        if heuristic is not None:
            return heuristic

        fallback = _by_id(active, rule.default_channel_id) or active[0]
        logger.info(f"Using fallback channel {fallback.name} for rule {rule.id}")
        return fallback

    def _heuristic(self, event: InboundEvent, channels: List[ChannelDTO], now: datetime) -> Optional[ChannelDTO]:
        value = to_number(event.current.get('value'), 0.0)
        if value >= HIGH_VALUE_THRESHOLD:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['high_value'])
            if channel:
                logger.info(f"Routing high-value deal ({value:.0f}) to {channel.name}")
                return channel
        elif value >= MEDIUM_VALUE_THRESHOLD:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['medium_value'])
            if channel:
                logger.info(f"Routing medium-value deal ({value:.0f}) to {channel.name}")
                return channel

        probability = to_number(event.current.get('probability'), 0.0)
        if probability >= HOT_PROBABILITY_THRESHOLD:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['hot'])
            if channel:
                logger.info(f"Routing hot deal ({probability:.0f}%) to {channel.name}")
                return channel

        event_type = event.event_type
        if 'won' in event_type:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['won'])
        elif 'lost' in event_type:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['lost'])
        elif 'created' in event_type or 'added' in event_type:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['new'])
        else:
            channel = None
        if channel:
            logger.info(f"Routing {event_type} to {channel.name}")
            return channel

        if now.hour < BUSINESS_DAY_START_HOUR or now.hour >= BUSINESS_DAY_END_HOUR:
            channel = find_channel_by_keywords(channels, CHANNEL_KEYWORDS['after_hours'])
            if channel:
                logger.info(f"Routing after-hours notification to {channel.name}")
                return channel

        owner_id = event.current.get('user_id') or event.current.get('owner_id') or event.user_id
        if isinstance(owner_id, dict):
            owner_id = owner_id.get('id')
        if owner_id:
            channel = find_channel_by_keywords(channels, [f"user-{owner_id}", f"owner-{owner_id}"])
            if channel:
                logger.info(f"Routing to owner channel {channel.name}")
                return channel

        return None


def get_routing_suggestions(channels: Sequence[ChannelDTO]) -> List[Dict[str, Any]]:
    """Setup hints for tenants whose channels leave routing heuristics unused."""
    active = [c for c in channels if c.is_active]
    suggestions = []

    if len(active) == 1:
        suggestions.append({
            'type': 'setup',
            'priority': 'high',
            'title': 'Add specialized channels',
            'description': 'Consider creating separate channels for high-value deals, wins, and urgent notifications',
        })

    if len(active) >= 2:
        for kind in ('high_value', 'won', 'new', 'hot', 'lost'):
            if find_channel_by_keywords(active, CHANNEL_KEYWORDS[kind]) is None:
                label = kind.replace('_', ' ')
                suggestions.append({
                    'type': 'channel-type',
                    'priority': 'medium',
                    'title': f'Consider adding {label} channel',
                    'suggested_names': CHANNEL_KEYWORDS[kind][:2],
                })

    return suggestions
