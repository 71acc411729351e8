#!/usr/bin/env python3
"""
Notification Tracker - audit trail for dispatch outcomes

Every terminal outcome of the pipeline (delivered, failed, skipped, queued
for later) becomes one row in the audit log. Writes never raise into the
pipeline: a broken audit sink is logged and the dispatch carries on.

Usage:
    from notification.tracker import AuditLogService

    audit = AuditLogService(dispatch_uow)
    audit.record(tenant_id, AuditEntry(status='success', event_type='deal.updated', tier=1))
"""

import logging
from typing import Any, Dict, List, Optional

from database.uow import UnitOfWork
from dispatch.dto import AuditEntry

logger = logging.getLogger(__name__)

FALLBACK_EVENT_TYPE = 'system.fallback_used'

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'
STATUS_PENDING = 'pending'
STATUS_SKIPPED = 'skipped'


class AuditLogService:
    """Persists AuditEntry rows through the audit log repository."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def record(self, tenant_id: Optional[int], entry: AuditEntry) -> Optional[int]:
        """Write one audit row. Returns the row id, or None when the write failed."""
        try:
            with self.uow() as repos:
                log_id = repos.audit_logs.create_audit_log(tenant_id, entry)
        except Exception as e:
            logger.error(
                f"Failed to write {entry.status} audit entry for tenant {tenant_id} "
                f"({entry.event_type}): {e}",
                exc_info=True
            )
            return None
        logger.debug(f"Audit {entry.status} for tenant {tenant_id} rule {entry.rule_id} -> log {log_id}")
        return log_id


class MemoryAuditSink:
    """Audit sink that keeps entries in memory. Used by dry runs and tests."""

    def __init__(self):
        self.entries: List[tuple] = []

    def record(self, tenant_id: Optional[int], entry: AuditEntry) -> Optional[int]:
        self.entries.append((tenant_id, entry))
        return len(self.entries)

    def by_status(self, status: str) -> List[AuditEntry]:
        return [entry for _, entry in self.entries if entry.status == status]


class ReliabilityAlerter:
    """
    Signals that a notification only got through on a fallback tier.

    The primary path is broken for this destination even though the user saw
    the message, so operators get a WARNING log and a 'system.fallback_used'
    audit row.
    """

    def __init__(self, audit_sink):
        self.audit_sink = audit_sink

    def fallback_used(
        self,
        tenant_id: Optional[int],
        tier: int,
        tier_name: str,
        errors: List[str],
        rule_id: Optional[int] = None,
        channel_id: Optional[int] = None,
        event_type: Optional[str] = None
    ) -> None:
        logger.warning(
            f"Notification for tenant {tenant_id} rule {rule_id} delivered via fallback tier "
            f"{tier} ({tier_name}) after: {'; '.join(errors)}"
        )
        payload: Dict[str, Any] = {
            'original_event_type': event_type,
            'tier': tier,
            'tier_name': tier_name,
            'errors': list(errors),
        }
        self.audit_sink.record(tenant_id, AuditEntry(
            status=STATUS_SUCCESS,
            event_type=FALLBACK_EVENT_TYPE,
            payload=payload,
            rule_id=rule_id,
            channel_id=channel_id,
            error_message='; '.join(errors) or None,
            retry_count=tier - 1,
            tier=tier,
        ))
