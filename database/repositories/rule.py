import logging
from typing import List
from sqlalchemy import select

from database.models import Rule
from database.repositories.base import BaseRepository
from dispatch.dto import RuleDTO

logger = logging.getLogger(__name__)


def _to_dto(rule: Rule) -> RuleDTO:
    return RuleDTO(
        id=rule.id,
        tenant_id=rule.tenant_id,
        name=rule.name,
        event_type=rule.event_type,
        filters=rule.filters or {},
        target_channel_id=rule.target_channel_id,
        default_channel_id=rule.target_webhook_id,
        template_mode=rule.template_mode or 'simple',
        custom_template=rule.custom_template,
        enabled=bool(rule.enabled),
        priority=rule.priority or 0,
    )


class RuleRepository(BaseRepository):
    def get_rules_for_event(self, tenant_id: int, pattern: str) -> List[RuleDTO]:
        """Enabled rules registered under exactly `pattern`, highest priority first."""
        stmt = select(Rule).where(
            Rule.tenant_id == tenant_id,
            Rule.event_type == pattern,
            Rule.enabled.is_(True)
        ).order_by(Rule.priority.desc(), Rule.created_at.asc())
        return [_to_dto(r) for r in self.db.execute(stmt).scalars().all()]
