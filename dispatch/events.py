"""
Inbound CRM events.

A webhook body is normalised once into an immutable InboundEvent; every later
stage reads from it and never from the raw dict.

Accepted shape:
    {
        "event": "deal.updated",
        "current": {...},
        "previous": {...},           # optional
        "company_id": 123,
        "user_id": 456,              # optional
        "meta": {"company_domain": "acme"} | {"host": "acme.pipedrive.com"},
        "raw_meta": {"correlation_id": "...", "entity_id": 789}
    }
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.utils import utc_now

logger = logging.getLogger(__name__)


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class InboundEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str
    company_id: Optional[str] = None
    user_id: Optional[str] = None
    api_domain: Optional[str] = None
    correlation_id: Optional[str] = None
    entity_id: Optional[str] = None
    current: Dict[str, Any] = Field(default_factory=dict)
    previous: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=utc_now)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('event_type')
    @classmethod
    def _normalise_event_type(cls, value: str) -> str:
        value = (value or '').strip().lower()
        if not value:
            raise ValueError("event type must not be empty")
        return value

    @property
    def entity(self) -> str:
        """'deal' for 'deal.updated'."""
        return self.event_type.split('.', 1)[0]

    @property
    def action(self) -> Optional[str]:
        parts = self.event_type.split('.', 1)
        return parts[1] if len(parts) == 2 else None

    @classmethod
    def from_webhook(cls, body: Dict[str, Any], received_at: Optional[datetime] = None) -> "InboundEvent":
        """Normalise a CRM webhook body."""
        if not isinstance(body, dict):
            raise ValueError(f"Webhook body must be an object, got {type(body).__name__}")

        event_type = body.get('event') or body.get('event_type')
        if not event_type:
            raise ValueError("Webhook body has no 'event' field")

        current = body.get('current')
        if current is None:
            # Older webhook versions put the snapshot under 'object'
            current = body.get('object') or {}

        meta = body.get('meta') or {}
        raw_meta = body.get('raw_meta') or {}

        api_domain = meta.get('company_domain')
        if not api_domain and meta.get('host'):
            api_domain = str(meta['host']).split('.', 1)[0]

        correlation_id = raw_meta.get('correlation_id') or meta.get('correlation_id')
        entity_id = raw_meta.get('entity_id') or meta.get('id') or current.get('id')

        return cls(
            event_type=event_type,
            company_id=_as_str(body.get('company_id') or meta.get('company_id')),
            user_id=_as_str(body.get('user_id') or meta.get('user_id')),
            api_domain=_as_str(api_domain),
            correlation_id=_as_str(correlation_id),
            entity_id=_as_str(entity_id),
            current=dict(current),
            previous=dict(body.get('previous') or {}),
            received_at=received_at or utc_now(),
            raw=dict(body),
        )

    def to_webhook(self) -> Dict[str, Any]:
        """A webhook-shaped dict that from_webhook() turns back into this event."""
        if self.raw:
            return dict(self.raw)
        body: Dict[str, Any] = {
            'event': self.event_type,
            'current': dict(self.current),
            'previous': dict(self.previous),
            'company_id': self.company_id,
            'user_id': self.user_id,
            'raw_meta': {'correlation_id': self.correlation_id, 'entity_id': self.entity_id},
        }
        if self.api_domain:
            body['meta'] = {'company_domain': self.api_domain}
        return body


def coerce_event(raw_event: Union[Dict[str, Any], InboundEvent]) -> InboundEvent:
    if isinstance(raw_event, InboundEvent):
        return raw_event
    return InboundEvent.from_webhook(raw_event)
