import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Generator, Optional, Tuple

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from pharmacy_sms.config import settings
from pharmacy_sms.errors import ConfigurationError, DatastoreError

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("outbound_numbers", "patients", "messages")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _build_engine(url: str) -> Engine:
    # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, echo=False)


engine: Optional[Engine] = _build_engine(settings.DATABASE_URL) if settings.DATABASE_URL else None

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def _require_engine() -> Engine:
    if engine is None or not settings.DATABASE_URL:
        logger.critical("DATABASE_URL is not configured")
        raise ConfigurationError("Server configuration error: datastore credentials not configured")
    return engine


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    bind = _require_engine()
    logger.debug(f"Initializing database with URL: {bind.url!r}")
    try:
        # Import models to register them with Base.metadata
        from pharmacy_sms import models  # noqa: F401

        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    _require_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all pipeline tables exist, False otherwise.
    """
    if engine is None or not settings.DATABASE_URL:
        logger.error("Database health check failed: DATABASE_URL not configured")
        return False
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        missing = [name for name in REQUIRED_TABLES if not inspector.has_table(name)]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, **fields) -> Tuple[Optional[Any], bool]:
    """
    Insert a message row (idempotent on the provider tracking id).

    Args:
        db: Database session
        **fields: Column values for the new message

    Returns:
        Tuple of (message, is_duplicate)
        - (Message, False): Message created
        - (None, True): A message with the same external_id already exists

    Raises:
        DatastoreError: on any other database failure
    """
    from pharmacy_sms.models import Message

    external_id = fields.get("external_id")
    logger.debug(f"Creating {fields.get('direction')} message, external_id={external_id}")

    try:
        message = Message(**fields)
        db.add(message)
        db.commit()
        db.refresh(message)
        logger.info(f"Message created successfully: id={message.id}, external_id={external_id}")
        return message, False

    except IntegrityError:
        # external_id already stored; expected for carrier redelivery
        db.rollback()
        if external_id and get_message_by_external_id(db, external_id) is not None:
            logger.info(f"Duplicate message detected: {external_id}")
            return None, True
        logger.error(f"Integrity error storing message {external_id}")
        raise DatastoreError("Failed to store message")

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message {external_id}: {e}")
        raise DatastoreError("Failed to store message") from e


def get_message_by_id(db: Session, message_id: str):
    """Retrieve a message by its primary key, or None."""
    from pharmacy_sms.models import Message

    result = db.query(Message).filter(Message.id == message_id).first()
    logger.debug(f"Message lookup {message_id}: {'found' if result else 'not found'}")
    return result


def get_message_by_external_id(db: Session, external_id: str):
    """Retrieve a message by its provider tracking id, or None."""
    from pharmacy_sms.models import Message

    return db.query(Message).filter(Message.external_id == external_id).first()
