import logging

from sqlalchemy.engine import Engine

import app.db.models  # noqa: F401
from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)


def init_db(bind: Engine = engine) -> None:
    """Create missing conversation tables. Schema changes go through Alembic."""
    Base.metadata.create_all(bind=bind)
    logger.info("Conversation store ready: %s", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    init_db()
