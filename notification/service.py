#!/usr/bin/env python3
"""
Dispatch queue - durable hand-off between webhook intake and the pipeline

Inbound events are enqueued on the RQ queue 'notifications' and processed by
notification.worker. If Redis is disabled, unreachable at start-up, or an
enqueue fails, the event is dispatched synchronously in the caller's process
instead of being dropped.

Usage:
    from notification.service import DispatchQueue

    queue = DispatchQueue(context)
    queue.submit(webhook_body)
"""

import os
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Dict, Any

from redis import Redis
from rq import Queue, Retry

from dispatch.dispatcher import DispatchResult

logger = logging.getLogger(__name__)

RETRY_INTERVALS = [5, 10, 20]

_context = None
_context_lock = threading.Lock()


def set_app_context(context) -> None:
    """Install the AppContext used by process_event_task in this process."""
    global _context
    with _context_lock:
        _context = context


def get_app_context():
    """AppContext for this process, built from config.yaml on first use."""
    global _context
    with _context_lock:
        if _context is None:
            from core.app_context import AppContext
            from core.config_loader import load_config
            logger.info("Building application context for queued dispatch")
            _context = AppContext.build(load_config())
        return _context


@dataclass
class SubmitResult:
    mode: str  # queued | sync
    job_id: Optional[str] = None
    result: Optional[DispatchResult] = None


class DispatchQueue:
    """
    Submits inbound events for dispatch.

    Availability over latency: any queue problem degrades to in-line
    processing rather than losing the event.
    """

    def __init__(
        self,
        context,
        redis_url: Optional[str] = None,
        use_async_queue: bool = True,
        queue_name: str = 'notifications',
        job_timeout: str = '5m',
        retry_max: int = 3
    ):
        self.context = context
        self.queue_name = queue_name
        self.job_timeout = job_timeout
        self.retry_max = retry_max
        self.redis_url = redis_url or os.environ.get('REDIS_URL', 'redis://localhost:6379/0')

        if not use_async_queue:
            logger.info("Async queue disabled via config. Using sync mode.")
            self.redis_conn = None
            self.queue = None
            self.async_mode = False
            return

        try:
            self.redis_conn = Redis.from_url(self.redis_url)
            # Validate connection with ping before using
            self.redis_conn.ping()
            self.queue = Queue(queue_name, connection=self.redis_conn)
            self.async_mode = True
            logger.info(f"Dispatch queue connected to Redis (queue '{queue_name}')")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}. Falling back to sync mode.")
            self.redis_conn = None
            self.queue = None
            self.async_mode = False

    @classmethod
    def from_context(cls, context) -> "DispatchQueue":
        queue_config = context.config.queue
        return cls(
            context,
            redis_url=queue_config.redis_url,
            use_async_queue=queue_config.use_async_queue,
            queue_name=queue_config.queue_name,
            job_timeout=queue_config.job_timeout,
            retry_max=queue_config.retry_max,
        )

    def submit(self, event_data: Dict[str, Any]) -> SubmitResult:
        if self.async_mode:
            try:
                retry_policy = Retry(max=self.retry_max, interval=RETRY_INTERVALS[:self.retry_max] or [5])
                job = self.queue.enqueue(
                    process_event_task,
                    event_data,
                    job_timeout=self.job_timeout,
                    result_ttl=86400,
                    retry=retry_policy
                )
                logger.info(f"Queued {event_data.get('event')} as job {job.id}")
                return SubmitResult(mode='queued', job_id=job.id)
            except Exception as e:
                logger.error(f"Enqueue failed: {e}. Processing synchronously.")

        result = self.context.dispatcher.dispatch(event_data)
        return SubmitResult(mode='sync', result=result)

    def get_queue_status(self) -> Dict[str, Any]:
        """Get queue status."""
        if not self.async_mode:
            return {'status': 'sync_mode', 'queue_length': 0}

        try:
            return {
                'status': 'active',
                'queue_length': len(self.queue),
                'redis_connected': self.redis_conn.ping()
            }
        except Exception as e:
            return {'status': 'error', 'error': str(e)}


# Worker task - must be at module level for RQ
def process_event_task(event_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Dispatch one queued CRM event (called by RQ worker).

    Returns a JSON-friendly summary stored as the job result.
    """
    context = get_app_context()
    result = context.dispatcher.dispatch(event_data)
    return {
        'tenant_id': result.tenant_id,
        'strategy': result.strategy,
        'rules_matched': result.rules_matched,
        'notifications_sent': result.notifications_sent,
        'notifications_queued': result.notifications_queued,
        'skipped': result.skipped,
        'skip_reason': result.skip_reason,
        'quota_exceeded': result.quota_exceeded,
    }
