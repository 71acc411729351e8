#!/usr/bin/env python3
"""
Error taxonomy for the dispatch pipeline.

Each class maps to one terminal or recoverable outcome so the audit log and
dashboards can tell "over budget" apart from "broken", and a systemic outage
(circuit open) apart from a destination-specific failure (all tiers failed).
"""

from typing import List, Optional


class DispatchError(Exception):
    """Base exception for dispatch pipeline errors."""
    pass


class DeliveryError(DispatchError):
    """Raised when a chat destination rejects or fails a message."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_time_ms: Optional[int] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_time_ms = response_time_ms


class TransientDeliveryError(DeliveryError):
    """Network error, timeout or 5xx from the destination. Retried across tiers."""
    pass


class NoAlternateChannel(DeliveryError):
    """Raised by the alternate-channel tier when the tenant has no other channel."""
    pass


class UnresolvedTenant(DispatchError):
    """Raised when no tenant resolution strategy matches an event."""

    def __init__(self, message: str, company_id: Optional[str] = None):
        super().__init__(message)
        self.company_id = company_id


class QuotaExceeded(DispatchError):
    """Raised when a tenant is over its monthly notification budget."""

    def __init__(self, tenant_id: int, usage: int, limit: Optional[int]):
        super().__init__(f"Notification quota exceeded for tenant {tenant_id}: {usage}/{limit}")
        self.tenant_id = tenant_id
        self.usage = usage
        self.limit = limit


class NoChannelAvailable(DispatchError):
    """Raised when a tenant has no active channel for a matched rule."""
    pass


class CircuitOpen(DispatchError):
    """Raised when the circuit breaker rejects a call without attempting I/O."""

    def __init__(self, message: str = "Circuit breaker is open - too many recent failures",
                 retry_after_seconds: float = 0.0):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AllTiersFailed(DispatchError):
    """Terminal per-rule failure carrying every tier's error."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("All delivery tiers failed: " + "; ".join(self.errors))
