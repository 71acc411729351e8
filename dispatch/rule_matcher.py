import logging
from dataclasses import dataclass, field
from typing import List, Optional

from database.uow import UnitOfWork
from dispatch.dto import RuleDTO

logger = logging.getLogger(__name__)


@dataclass
class RuleMatch:
    rules: List[RuleDTO] = field(default_factory=list)
    last_pass: Optional[str] = None  # exact | wildcard | entity

    def __bool__(self) -> bool:
        return bool(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def candidate_patterns(event_type: str) -> List[tuple]:
    """
    Widening lookup order for an event type.

    'deal.updated' -> exact 'deal.updated', then 'deal.*', then 'deal'.
    """
    patterns = [('exact', event_type)]
    if '.' in event_type:
        entity = event_type.split('.', 1)[0]
        patterns.append(('wildcard', f"{entity}.*"))
        patterns.append(('entity', entity))
    return patterns


class RuleMatcher:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def match_rules(self, tenant_id: int, event_type: str) -> RuleMatch:
        for pass_name, pattern in candidate_patterns(event_type):
            with self.uow() as repos:
                rules = repos.rules.get_rules_for_event(tenant_id, pattern)

            rules = [r for r in rules if r.enabled]
            if rules:
                # sorted() is stable, so equal priorities keep store order
                rules = sorted(rules, key=lambda r: r.priority, reverse=True)
                logger.info(
                    f"Matched {len(rules)} rule(s) for tenant {tenant_id} on {pass_name} pass ('{pattern}')"
                )
                return RuleMatch(rules=rules, last_pass=pass_name)

        logger.info(f"No rules for tenant {tenant_id} event {event_type}")
        return RuleMatch()
