#!/usr/bin/env python3
"""
Tests for rule matching: exact, then entity wildcard, then bare entity.
"""

import unittest

from dispatch.dto import RuleDTO
from dispatch.rule_matcher import RuleMatcher, candidate_patterns
from tests.fakes import FakeStore


def rule(rule_id, event_type, priority=0, enabled=True):
    return RuleDTO(id=rule_id, tenant_id=1, name=f"rule-{rule_id}", event_type=event_type,
                   priority=priority, enabled=enabled)


class TestCandidatePatterns(unittest.TestCase):

    def test_dotted_event_widens(self):
        self.assertEqual(
            candidate_patterns('deal.updated'),
            [('exact', 'deal.updated'), ('wildcard', 'deal.*'), ('entity', 'deal')]
        )

    def test_bare_entity_has_single_pass(self):
        self.assertEqual(candidate_patterns('deal'), [('exact', 'deal')])


class TestRuleMatcher(unittest.TestCase):

    def setUp(self):
        self.store = FakeStore()
        self.matcher = RuleMatcher(self.store.uow)

    def test_exact_match_stops_widening(self):
        self.store.rules += [rule(1, 'deal.updated'), rule(2, 'deal.*')]
        match = self.matcher.match_rules(1, 'deal.updated')

        self.assertEqual([r.id for r in match], [1])
        self.assertEqual(match.last_pass, 'exact')
        self.assertEqual(self.store.rule_lookups, [(1, 'deal.updated')])

    def test_wildcard_pass(self):
        self.store.rules += [rule(2, 'deal.*'), rule(3, 'deal')]
        match = self.matcher.match_rules(1, 'deal.won')
        self.assertEqual([r.id for r in match], [2])
        self.assertEqual(match.last_pass, 'wildcard')

    def test_entity_pass(self):
        self.store.rules.append(rule(3, 'deal'))
        match = self.matcher.match_rules(1, 'deal.won')
        self.assertEqual(match.last_pass, 'entity')
        self.assertEqual(len(match), 1)

    def test_priority_descending_and_stable(self):
        self.store.rules += [rule(1, 'deal.updated', 0), rule(2, 'deal.updated', 5), rule(3, 'deal.updated', 0)]
        match = self.matcher.match_rules(1, 'deal.updated')
        self.assertEqual([r.id for r in match], [2, 1, 3])

    def test_disabled_rules_ignored(self):
        self.store.rules.append(rule(1, 'deal.updated', enabled=False))
        match = self.matcher.match_rules(1, 'deal.updated')
        self.assertFalse(match)
        self.assertIsNone(match.last_pass)

    def test_other_tenants_rules_ignored(self):
        self.store.rules.append(RuleDTO(id=9, tenant_id=2, name='x', event_type='deal.updated'))
        self.assertFalse(self.matcher.match_rules(1, 'deal.updated'))


if __name__ == '__main__':
    unittest.main()
