import contextlib
import logging
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from database.repositories import (
    TenantRepository,
    RuleRepository,
    ChannelRepository,
    SubscriptionRepository,
    AuditLogRepository,
    QuietHoursRepository,
    DelayedNotificationRepository,
)

logger = logging.getLogger(__name__)


class DispatchRepositories:
    """Every repository the dispatch pipeline needs, bound to one Session."""

    def __init__(self, session: Session):
        self.session = session
        self.tenants = TenantRepository(session)
        self.rules = RuleRepository(session)
        self.channels = ChannelRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.audit_logs = AuditLogRepository(session)
        self.quiet_hours = QuietHoursRepository(session)
        self.delayed = DelayedNotificationRepository(session)


UnitOfWork = Callable[[], ContextManager[DispatchRepositories]]


@contextlib.contextmanager
def dispatch_uow(session_factory: Optional[Callable[[], Session]] = None):
    """Per-unit-of-work transaction scope.

    Yields a DispatchRepositories bundle bound to a fresh Session. Commits on
    success, rolls back on exception, always closes. Pipeline stages open one
    of these per collaborator call so no Session is held across network I/O.

    Usage:
        with dispatch_uow() as repos:
            rules = repos.rules.get_rules_for_event(tenant_id, 'deal.updated')
        # commit happens automatically on successful exit
    """
    if session_factory is None:
        from database.database import SessionLocal
        session_factory = SessionLocal

    session = session_factory()
    try:
        yield DispatchRepositories(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
