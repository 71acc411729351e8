from typing import Optional
from sqlalchemy import select

from database.models import QuietHours
from database.repositories.base import BaseRepository
from dispatch.dto import QuietHoursDTO


class QuietHoursRepository(BaseRepository):
    def get_config(self, tenant_id: int) -> Optional[QuietHoursDTO]:
        stmt = select(QuietHours).where(QuietHours.tenant_id == tenant_id)
        row = self.db.execute(stmt).scalar_one_or_none()
        if row is None:
            return None
        return QuietHoursDTO(
            tenant_id=tenant_id,
            timezone=row.timezone or 'UTC',
            start_time=row.start_time or '18:00',
            end_time=row.end_time or '09:00',
            weekends_enabled=True if row.weekends_enabled is None else row.weekends_enabled,
            holidays=list(row.holidays or []),
            enabled=bool(row.enabled),
        )
