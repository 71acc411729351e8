#!/usr/bin/env python3
"""
Tests for rule filter compilation and evaluation.
"""

from datetime import datetime, timezone

import pytest

from dispatch.events import InboundEvent
from dispatch.filters import (
    MATCH_ALL,
    BusinessHours,
    LabelSet,
    UnknownPredicate,
    compile_filter,
    create_filter_preset,
    matches,
    validate_filters,
)

WEDNESDAY_10AM = datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc)
WEDNESDAY_8PM = datetime(2024, 6, 12, 20, 0, tzinfo=timezone.utc)
SATURDAY_10AM = datetime(2024, 6, 15, 10, 0, tzinfo=timezone.utc)


def deal(user_id=None, **current):
    body = {'event': 'deal.updated', 'current': current}
    if user_id is not None:
        body['user_id'] = user_id
    return InboundEvent.from_webhook(body)


class TestCompileFilter:

    @pytest.mark.parametrize('spec', [None, {}, '', '   ', 'not json', '[1, 2]'])
    def test_empty_or_invalid_spec_matches_everything(self, spec):
        assert compile_filter(spec) is MATCH_ALL
        assert matches(deal(value=1), spec)

    def test_json_string_spec(self):
        compiled = compile_filter('{"value_min": 100}')
        assert compiled.evaluate(deal(value=150))
        assert not compiled.evaluate(deal(value=50))

    def test_metadata_keys_are_not_predicates(self):
        assert compile_filter({'description': 'x', 'name': 'y'}) == MATCH_ALL

    def test_unknown_key_is_ignored_but_kept(self):
        compiled = compile_filter({'colour': 'red'})
        assert compiled.predicates == (UnknownPredicate('colour'),)
        assert compiled.evaluate(deal())


class TestNumericRanges:

    def test_value_range_inclusive(self):
        spec = {'value_min': 1000, 'value_max': 5000}
        assert matches(deal(value=1000), spec)
        assert matches(deal(value='5000'), spec)
        assert not matches(deal(value=5001), spec)

    def test_zero_bound_is_a_real_bound(self):
        assert not matches(deal(value=-5), {'value_min': 0})
        assert not matches(deal(probability=10), {'probability_max': 0})

    def test_missing_value_treated_as_zero(self):
        assert not matches(deal(), {'value_min': 1})
        assert matches(deal(), {'value_max': 10})

    def test_probability(self):
        assert matches(deal(probability=85), {'probability_min': 80})
        assert not matches(deal(probability=70), {'probability_min': 80})


class TestMembership:

    def test_stage_ids_compare_as_strings(self):
        assert matches(deal(stage_id=3), {'stage_ids': ['3', 4]})
        assert not matches(deal(stage_id=5), {'stage_ids': [3, 4]})

    def test_missing_field_fails_membership(self):
        assert not matches(deal(), {'pipeline_ids': [1]})

    def test_owner_from_expanded_object(self):
        assert matches(deal(owner_id={'id': 7, 'name': 'Ann'}), {'owner_ids': [7]})

    def test_owner_falls_back_to_event_user(self):
        assert matches(deal(user_id=7), {'owner_ids': [7]})
        assert not matches(deal(user_id=8), {'owner_ids': [7]})

    def test_currency_defaults_to_usd(self):
        assert matches(deal(), {'currencies': ['usd']})
        assert not matches(deal(currency='EUR'), {'currencies': ['USD']})

    def test_stage_name_falls_back_to_status(self):
        assert matches(deal(status='won'), {'stage_names': ['Won']})
        assert matches(deal(stage_name='Negotiation', status='open'), {'stage_name': 'negotiation'})


class TestLabels:

    def test_any_is_default(self):
        compiled = compile_filter({'labels': ['hot', 'vip']})
        assert compiled.predicates == (LabelSet(frozenset({'hot', 'vip'}), 'any'),)
        assert compiled.evaluate(deal(label='hot'))

    def test_all_requires_every_label(self):
        spec = {'labels': ['hot', 'vip'], 'label_match_type': 'all'}
        assert matches(deal(label=['hot', 'vip', 'x']), spec)
        assert not matches(deal(label='hot'), spec)

    def test_comma_separated_labels(self):
        assert matches(deal(label='cold, vip'), {'labels': ['vip']})

    def test_no_label_on_event(self):
        assert not matches(deal(), {'labels': ['hot']})


class TestTimeRestrictions:

    def test_business_hours(self):
        spec = {'time_restrictions': {'business_hours_only': True}}
        assert matches(deal(), spec, WEDNESDAY_10AM)
        assert not matches(deal(), spec, WEDNESDAY_8PM)

    def test_weekdays_only_without_business_hours(self):
        spec = {'time_restrictions': {'weekdays_only': True}}
        assert matches(deal(), spec, WEDNESDAY_8PM)
        assert not matches(deal(), spec, SATURDAY_10AM)

    def test_timezone(self):
        # 10:00 UTC is 19:00 in Tokyo
        predicate = BusinessHours(business_hours_only=True, timezone='Asia/Tokyo')
        assert not predicate.test(deal(), WEDNESDAY_10AM)

    def test_disabled_restrictions_add_nothing(self):
        assert compile_filter({'time_restrictions': {'start_hour': 9}}) == MATCH_ALL

    def test_non_object_restrictions_are_ignored(self):
        assert compile_filter({'time_restrictions': 'weekdays'}) == MATCH_ALL
        assert matches(deal(), {'time_restrictions': ['business_hours_only']}, SATURDAY_10AM)

    def test_unreadable_hours_fall_back_to_defaults(self):
        [predicate] = compile_filter({'time_restrictions': {
            'business_hours_only': True, 'start_hour': 'nine', 'end_hour': 'inf',
        }}).predicates
        assert (predicate.start_hour, predicate.end_hour) == (9, 17)
        assert matches(deal(), {'time_restrictions': {'business_hours_only': True, 'start_hour': 'x'}},
                       WEDNESDAY_10AM)


class TestConjunction:

    def test_all_predicates_must_pass(self):
        spec = {'value_min': 1000, 'stage_ids': [3], 'currencies': ['EUR']}
        assert matches(deal(value=2000, stage_id=3, currency='EUR'), spec)
        assert not matches(deal(value=2000, stage_id=3, currency='USD'), spec)


class TestValidation:

    def test_valid(self):
        assert validate_filters({'value_min': 1, 'value_max': 2}) == []

    def test_problems_are_reported(self):
        errors = validate_filters({
            'value_min': 10, 'value_max': 1,
            'probability_min': 120,
            'time_restrictions': {'start_hour': 18, 'end_hour': 9},
            'label_match_type': 'some',
        })
        assert 'value_min cannot be greater than value_max' in errors
        assert 'probability_min must be between 0 and 100' in errors
        assert 'start_hour must be before end_hour' in errors
        assert "label_match_type must be 'any' or 'all'" in errors

    def test_non_object_time_restrictions_reported(self):
        assert validate_filters({'time_restrictions': 'weekdays'}) == ['time_restrictions must be an object']

    def test_presets_are_copies(self):
        preset = create_filter_preset('high_value_deals')
        preset['value_min'] = 1
        assert create_filter_preset('high_value_deals')['value_min'] == 10000
        assert create_filter_preset('nope') is None
