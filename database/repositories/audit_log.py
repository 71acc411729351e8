from typing import Optional

from database.models import AuditLog
from database.repositories.base import BaseRepository
from dispatch.dto import AuditEntry


class AuditLogRepository(BaseRepository):
    def create_audit_log(self, tenant_id: Optional[int], entry: AuditEntry) -> int:
        row = AuditLog(
            tenant_id=tenant_id,
            rule_id=entry.rule_id,
            webhook_id=entry.channel_id,
            event_type=entry.event_type,
            payload=entry.payload or {},
            formatted_message=entry.formatted_message or {},
            status=entry.status,
            error_message=entry.error_message,
            response_code=entry.response_code,
            response_time_ms=entry.response_time_ms,
            retry_count=entry.retry_count,
            delivery_tier=entry.tier,
        )
        self.db.add(row)
        self.db.flush()
        return row.id
