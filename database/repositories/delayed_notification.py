import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import select, delete, update

from database.models import DelayedNotification
from database.repositories.base import BaseRepository
from dispatch.dto import QueuedNotificationDTO

logger = logging.getLogger(__name__)


def _to_dto(row: DelayedNotification) -> QueuedNotificationDTO:
    return QueuedNotificationDTO(
        id=row.id,
        tenant_id=row.tenant_id,
        channel_url=row.channel_url,
        payload=row.payload or {},
        scheduled_for=row.scheduled_for,
        rule_id=row.rule_id,
        channel_id=row.channel_id,
        template_mode=row.template_mode or 'simple',
        custom_template=row.custom_template,
        reason=row.reason,
        attempts=row.attempts or 0,
        created_at=row.created_at,
    )


class DelayedNotificationRepository(BaseRepository):
    def add(
        self,
        tenant_id: int,
        channel_url: str,
        payload: Dict[str, Any],
        scheduled_for: datetime,
        rule_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        template_mode: str = 'simple',
        custom_template: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> QueuedNotificationDTO:
        row = DelayedNotification(
            tenant_id=tenant_id,
            channel_url=channel_url,
            payload=payload,
            scheduled_for=scheduled_for,
            rule_id=rule_id,
            channel_id=channel_id,
            template_mode=template_mode,
            custom_template=custom_template,
            reason=reason,
            attempts=0,
        )
        self.db.add(row)
        self.db.flush()  # Generate ID
        return _to_dto(row)

    def get_due(self, now: datetime, limit: int = 50,
                lease_until: Optional[datetime] = None) -> List[QueuedNotificationDTO]:
        """
        Due rows, oldest schedule first.

        Rows locked by a concurrent sweep are skipped. With `lease_until`, the
        claimed rows are pushed to that time in the same transaction so another
        sweeper does not pick them up while they are being delivered.
        """
        stmt = (
            select(DelayedNotification)
            .where(DelayedNotification.scheduled_for <= now)
            .order_by(DelayedNotification.scheduled_for.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        rows = self.db.execute(stmt).scalars().all()
        due = [_to_dto(r) for r in rows]
        if lease_until is not None:
            for row in rows:
                row.scheduled_for = lease_until
            self.db.flush()
        return due

    def delete(self, notification_id: int) -> None:
        self.db.execute(delete(DelayedNotification).where(DelayedNotification.id == notification_id))

    def reschedule(self, notification_id: int, scheduled_for: datetime, error: Optional[str] = None) -> None:
        self.db.execute(
            update(DelayedNotification)
            .where(DelayedNotification.id == notification_id)
            .values(
                scheduled_for=scheduled_for,
                attempts=DelayedNotification.attempts + 1,
                last_error=error
            )
        )
