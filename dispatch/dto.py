"""Data Transfer Objects for the dispatch pipeline.

Repositories convert ORM rows into these plain objects inside their own
session scope, so pipeline stages never touch a live Session and tests can
build them directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class TenantDTO:
    id: int
    status: str = 'active'
    plan_tier: str = 'free'
    company_name: str = ''
    pipedrive_company_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == 'active'


@dataclass(frozen=True)
class ChannelDTO:
    id: int
    tenant_id: int
    name: str
    webhook_url: str
    is_active: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class RuleDTO:
    id: int
    tenant_id: int
    name: str
    event_type: str
    filters: Any = field(default_factory=dict)
    target_channel_id: Optional[int] = None
    default_channel_id: Optional[int] = None
    template_mode: str = 'simple'
    custom_template: Optional[str] = None
    enabled: bool = True
    priority: int = 0


@dataclass(frozen=True)
class UsageDTO:
    tenant_id: int
    plan_tier: str
    usage: int
    limit: Optional[int]  # None means unlimited


@dataclass(frozen=True)
class QuietHoursDTO:
    tenant_id: int
    timezone: str = 'UTC'
    start_time: str = '18:00'
    end_time: str = '09:00'
    weekends_enabled: bool = True
    holidays: List[str] = field(default_factory=list)
    enabled: bool = False


@dataclass
class QueuedNotificationDTO:
    id: int
    tenant_id: int
    channel_url: str
    payload: Dict[str, Any]
    scheduled_for: datetime
    rule_id: Optional[int] = None
    channel_id: Optional[int] = None
    template_mode: str = 'simple'
    custom_template: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    created_at: Optional[datetime] = None


@dataclass
class AuditEntry:
    """One row for the audit log collaborator."""
    status: str  # success | failed | pending | skipped
    event_type: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    rule_id: Optional[int] = None
    channel_id: Optional[int] = None
    formatted_message: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    response_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    retry_count: int = 0
    tier: Optional[int] = None
