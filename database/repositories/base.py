from sqlalchemy.orm import Session


class BaseRepository:
    """Repositories share the caller's Session; dispatch_uow owns the transaction."""

    def __init__(self, db: Session):
        self.db = db
