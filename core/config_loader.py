import yaml
import os
from typing import Optional
from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    url: str


class DedupConfig(BaseModel):
    """In-memory duplicate suppression window."""
    ttl_seconds: float = 60.0
    sweep_interval_seconds: float = 30.0


class TenantResolutionConfig(BaseModel):
    # Tenant used by the single-tenant heuristic (development deployments)
    default_tenant_id: Optional[int] = None
    # Write the event's company id onto a tenant found by a weaker strategy
    auto_map_company: bool = True


class QuotaConfig(BaseModel):
    enforce: bool = True  # False skips quota checks entirely (development mode)
    warning_threshold: float = 75.0
    critical_threshold: float = 90.0


class DeliveryConfig(BaseModel):
    """Delivery tier timing."""
    request_timeout_seconds: float = 10.0
    emergency_timeout_seconds: float = 5.0
    retry_backoff_seconds: float = 1.0
    user_agent: str = "CRMRelay-Notification-Service/1.0"


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0


class DelayedQueueConfig(BaseModel):
    """
    Configuration for the quiet-hours delayed queue sweep.

    Rows are re-offered to the delivery pipeline once due; failures are
    rescheduled until max_attempts or max_age_hours is reached.
    """
    sweep_interval_seconds: int = 300
    batch_size: int = 50
    retry_delay_minutes: int = 5
    max_attempts: int = 5
    max_age_hours: int = 48


class QueueConfig(BaseModel):
    use_async_queue: bool = True  # Use Redis queue, falls back to sync processing
    redis_url: Optional[str] = None
    queue_name: str = "notifications"
    job_timeout: str = "5m"
    retry_max: int = 3


class AppConfig(BaseModel):
    database: DatabaseConfig
    dedup: DedupConfig = DedupConfig()
    tenant_resolution: TenantResolutionConfig = TenantResolutionConfig()
    quota: QuotaConfig = QuotaConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    delayed_queue: DelayedQueueConfig = DelayedQueueConfig()
    queue: QueueConfig = QueueConfig()


def load_config(config_path: str = "config.yaml") -> AppConfig:
    # If not found at relative path (e.g. running from root), try the project root
    if not os.path.exists(config_path):
        base_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(base_dir, "..", "config.yaml")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    # Allow env var override for DB URL
    env_db_url = os.environ.get("DATABASE_URL")
    if env_db_url:
        data.setdefault('database', {})
        data['database']['url'] = env_db_url

    # Allow env var override for Redis URL
    env_redis_url = os.environ.get("REDIS_URL")
    if env_redis_url:
        if not data.get('queue'):
            data['queue'] = {}
        data['queue']['redis_url'] = env_redis_url

    # Allow env var override for the single-tenant fallback
    env_default_tenant = os.environ.get("DISPATCH_DEFAULT_TENANT_ID")
    if env_default_tenant:
        if not data.get('tenant_resolution'):
            data['tenant_resolution'] = {}
        data['tenant_resolution']['default_tenant_id'] = int(env_default_tenant)

    return AppConfig(**data)
