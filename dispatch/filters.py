#!/usr/bin/env python3
"""
Rule filter evaluation.

A rule's `filters` JSON is compiled once into a tuple of typed predicates.
Every present key constrains the event; absent keys do not. Predicates are
AND-ed and evaluation stops at the first one that fails.

Supported keys:
    value_min / value_max                 current.value
    probability_min / probability_max     current.probability
    stage_ids                             current.stage_id
    pipeline_ids                          current.pipeline_id
    owner_ids                             current.user_id / owner_id / event user
    currencies                            current.currency (default USD)
    stage_name / stage_names              current.stage_name, else current.status
    labels + label_match_type (any|all)   current.label
    time_restrictions                     processing time

Usage:
    compiled = compile_filter(rule.filters)
    if matches(event, compiled):
        ...
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.utils import ensure_utc, to_number
from dispatch.events import InboundEvent

logger = logging.getLogger(__name__)

# Keys that describe a filter rather than constrain it
METADATA_KEYS = frozenset({'description', 'name', 'label_match_type', 'match_type'})

FILTER_PRESETS: Dict[str, Dict[str, Any]] = {
    'high_value_deals': {
        'value_min': 10000,
        'description': 'Deals worth $10,000 or more',
    },
    'hot_prospects': {
        'probability_min': 80,
        'description': 'Deals with 80%+ probability',
    },
    'big_deals_hot_prospects': {
        'value_min': 5000,
        'probability_min': 70,
        'description': 'High-value deals with good probability',
    },
    'business_hours_only': {
        'time_restrictions': {
            'business_hours_only': True,
            'start_hour': 9,
            'end_hour': 17,
            'weekdays_only': True,
        },
        'description': 'Only during business hours (9 AM - 5 PM, weekdays)',
    },
    'urgent_deals': {
        'probability_min': 90,
        'description': 'High-probability deals in closing stages',
    },
}


def _normalise_member(value: Any) -> str:
    # CRM ids arrive as ints or numeric strings depending on the API version
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        return [part for part in (p.strip() for p in value.split(',')) if part]
    return [value]


class Predicate(ABC):
    """One compiled filter constraint."""

    @abstractmethod
    def test(self, event: InboundEvent, now: datetime) -> bool:
        pass


@dataclass(frozen=True)
class NumericRange(Predicate):
    field: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def test(self, event: InboundEvent, now: datetime) -> bool:
        value = to_number(event.current.get(self.field), 0.0)
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class MembershipSet(Predicate):
    fields: Tuple[str, ...]
    allowed: FrozenSet[str]
    default: Optional[str] = None
    include_event_user: bool = False

    def _candidate(self, event: InboundEvent) -> Optional[Any]:
        for name in self.fields:
            value = event.current.get(name)
            if isinstance(value, dict):
                # Expanded objects, e.g. {"user_id": {"id": 7, "name": "..."}}
                value = value.get('id', value.get('value'))
            if value is not None and value != "":
                return value
        if self.include_event_user and event.user_id:
            return event.user_id
        return self.default

    def test(self, event: InboundEvent, now: datetime) -> bool:
        value = self._candidate(event)
        if value is None:
            return False
        return _normalise_member(value) in self.allowed


@dataclass(frozen=True)
class LabelSet(Predicate):
    labels: FrozenSet[str]
    match_type: str = 'any'

    def test(self, event: InboundEvent, now: datetime) -> bool:
        present = {_normalise_member(v) for v in _as_list(event.current.get('label'))}
        if self.match_type == 'all':
            return self.labels.issubset(present)
        return bool(self.labels & present)


@dataclass(frozen=True)
class BusinessHours(Predicate):
    business_hours_only: bool = False
    start_hour: int = 9
    end_hour: int = 17
    weekdays_only: bool = False
    timezone: str = 'UTC'

    def _local(self, now: datetime) -> datetime:
        try:
            return ensure_utc(now).astimezone(ZoneInfo(self.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown filter timezone {self.timezone!r}, using UTC")
            return ensure_utc(now)

    def test(self, event: InboundEvent, now: datetime) -> bool:
        local = self._local(now)
        if self.business_hours_only and not (self.start_hour <= local.hour < self.end_hour):
            return False
        if self.weekdays_only and local.weekday() >= 5:
            return False
        return True


@dataclass(frozen=True)
class UnknownPredicate(Predicate):
    key: str

    def test(self, event: InboundEvent, now: datetime) -> bool:
        return True


@dataclass(frozen=True)
class CompiledFilter:
    predicates: Tuple[Predicate, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.predicates)

    def evaluate(self, event: InboundEvent, now: Optional[datetime] = None) -> bool:
        now = ensure_utc(now)
        for predicate in self.predicates:
            if not predicate.test(event, now):
                return False
        return True


MATCH_ALL = CompiledFilter()


def _parse_spec(spec: Any) -> Dict[str, Any]:
    if spec is None:
        return {}
    if isinstance(spec, str):
        if not spec.strip():
            return {}
        try:
            spec = json.loads(spec)
        except json.JSONDecodeError as e:
            logger.error(f"Unparseable rule filters, matching everything: {e}")
            return {}
    if not isinstance(spec, dict):
        logger.error(f"Rule filters must be an object, got {type(spec).__name__}; matching everything")
        return {}
    return spec


def _optional_number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return to_number(value, 0.0)


def _hour(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    hour = to_number(value, default)
    if not 0 <= hour <= 24:
        logger.warning(f"Hour {value!r} out of range, using {default}")
        return default
    return int(hour)


def _members(values: Any) -> FrozenSet[str]:
    return frozenset(_normalise_member(v) for v in _as_list(values))


def compile_filter(spec: Any) -> CompiledFilter:
    filters = _parse_spec(spec)
    if not filters:
        return MATCH_ALL

    predicates: List[Predicate] = []
    handled = set(METADATA_KEYS)

    if 'value_min' in filters or 'value_max' in filters:
        handled.update({'value_min', 'value_max'})
        rng = NumericRange('value', _optional_number(filters.get('value_min')),
                           _optional_number(filters.get('value_max')))
        if rng.minimum is not None or rng.maximum is not None:
            predicates.append(rng)

    if 'probability_min' in filters or 'probability_max' in filters:
        handled.update({'probability_min', 'probability_max'})
        rng = NumericRange('probability', _optional_number(filters.get('probability_min')),
                           _optional_number(filters.get('probability_max')))
        if rng.minimum is not None or rng.maximum is not None:
            predicates.append(rng)

    membership = {
        'stage_ids': dict(fields=('stage_id',)),
        'pipeline_ids': dict(fields=('pipeline_id',)),
        'owner_ids': dict(fields=('user_id', 'owner_id'), include_event_user=True),
        'currencies': dict(fields=('currency',), default='USD'),
    }
    for key, options in membership.items():
        if key in filters:
            handled.add(key)
            if filters[key] is not None:
                predicates.append(MembershipSet(allowed=_members(filters[key]), **options))

    stage_names = filters.get('stage_names', filters.get('stage_name'))
    handled.update({'stage_name', 'stage_names'})
    if stage_names is not None:
        predicates.append(MembershipSet(fields=('stage_name', 'status'), allowed=_members(stage_names)))

    if 'labels' in filters:
        handled.add('labels')
        labels = _members(filters['labels'])
        if labels:
            match_type = str(filters.get('label_match_type') or filters.get('match_type') or 'any').lower()
            if match_type not in ('any', 'all'):
                logger.warning(f"Unknown label match type {match_type!r}, using 'any'")
                match_type = 'any'
            predicates.append(LabelSet(labels=labels, match_type=match_type))

    if 'time_restrictions' in filters:
        handled.add('time_restrictions')
        restrictions = filters['time_restrictions'] or {}
        if not isinstance(restrictions, dict):
            logger.error(f"time_restrictions must be an object, got {type(restrictions).__name__}; ignoring")
            restrictions = {}
        if restrictions.get('business_hours_only') or restrictions.get('weekdays_only'):
            predicates.append(BusinessHours(
                business_hours_only=bool(restrictions.get('business_hours_only')),
                start_hour=_hour(restrictions.get('start_hour'), 9),
                end_hour=_hour(restrictions.get('end_hour'), 17),
                weekdays_only=bool(restrictions.get('weekdays_only')),
                timezone=str(restrictions.get('timezone') or 'UTC'),
            ))

    for key in filters:
        if key not in handled:
            logger.warning(f"Ignoring unknown filter key '{key}'")
            predicates.append(UnknownPredicate(key))

    return CompiledFilter(tuple(predicates))


def matches(event: InboundEvent, spec: Union[CompiledFilter, Dict[str, Any], str, None],
            now: Optional[datetime] = None) -> bool:
    compiled = spec if isinstance(spec, CompiledFilter) else compile_filter(spec)
    return compiled.evaluate(event, now)


def validate_filters(spec: Any) -> List[str]:
    """Human-readable problems with a filter spec; empty when valid."""
    filters = _parse_spec(spec)
    errors = []

    value_min = _optional_number(filters.get('value_min'))
    value_max = _optional_number(filters.get('value_max'))
    if value_min is not None and value_max is not None and value_min > value_max:
        errors.append('value_min cannot be greater than value_max')

    prob_min = _optional_number(filters.get('probability_min'))
    prob_max = _optional_number(filters.get('probability_max'))
    if prob_min is not None and prob_max is not None and prob_min > prob_max:
        errors.append('probability_min cannot be greater than probability_max')
    for name, value in (('probability_min', prob_min), ('probability_max', prob_max)):
        if value is not None and not 0 <= value <= 100:
            errors.append(f'{name} must be between 0 and 100')

    restrictions = filters.get('time_restrictions') or {}
    if not isinstance(restrictions, dict):
        errors.append('time_restrictions must be an object')
        restrictions = {}
    for name in ('start_hour', 'end_hour'):
        value = restrictions.get(name)
        if value is not None and not 0 <= to_number(value, -1) <= 23:
            errors.append(f'{name} must be between 0 and 23')
    start = restrictions.get('start_hour')
    end = restrictions.get('end_hour')
    if start is not None and end is not None and to_number(start) >= to_number(end):
        errors.append('start_hour must be before end_hour')

    match_type = filters.get('label_match_type') or filters.get('match_type')
    if match_type is not None and str(match_type).lower() not in ('any', 'all'):
        errors.append("label_match_type must be 'any' or 'all'")

    return errors


def create_filter_preset(name: str) -> Optional[Dict[str, Any]]:
    preset = FILTER_PRESETS.get(name)
    return json.loads(json.dumps(preset)) if preset is not None else None
