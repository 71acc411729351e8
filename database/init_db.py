import logging
from sqlalchemy import text
from tenacity import retry, stop_after_attempt, wait_fixed, before_sleep_log

from database import database
from database.models import Base

logger = logging.getLogger(__name__)


@retry(
    stop=stop_after_attempt(5),
    wait=wait_fixed(2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def init_db():
    logger.info("Connecting to database...")
    with database.engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=database.engine)
    logger.info("Database tables ensured")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    init_db()
