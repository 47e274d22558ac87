import logging
from typing import Generator

from sqlalchemy import create_engine, text, func
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import SQLAlchemyError

from anonchat.config import settings
from anonchat.errors import InsertFailed

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine with SQLite-specific settings
# check_same_thread=False is required for SQLite to work with FastAPI's async
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from anonchat.models import Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            result = db.execute(text(
                "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='messages'"
            )).scalar()
            if result == 0:
                logger.error("Database schema not applied: 'messages' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Durable append-only record of chat messages.

    Identities come from the table's auto-increment primary key, so they
    strictly increase and are only handed out once the row has committed.
    """

    def __init__(self, db: Session):
        self.db = db

    def insert(self, sender_id: str, text: str) -> int:
        """
        Persist a message and return its server-assigned identity.

        Raises:
            InsertFailed: the write did not commit; nothing was allocated
        """
        from anonchat.models import Message

        logger.info(f"Inserting message from sender={sender_id}")
        logger.debug(f"Message text length: {len(text)}")

        try:
            row = Message(sender=sender_id, message=text)
            self.db.add(row)
            self.db.flush()
            server_id = row.id
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to insert message from {sender_id}: {e}")
            raise InsertFailed(sender_id, str(e)) from e

        logger.info(f"Message stored: id={server_id}, sender={sender_id}")
        return server_id

    def get(self, server_id: int):
        """Look up a stored message by its identity."""
        from anonchat.models import Message

        result = self.db.get(Message, server_id)
        logger.debug(f"Message lookup {server_id}: {'found' if result else 'not found'}")
        return result

    def count(self) -> int:
        from anonchat.models import Message

        return self.db.query(func.count(Message.id)).scalar() or 0
