"""Database configuration and session management."""

import os
import logging
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import declarative_base, sessionmaker

from tokenhub.config import settings

logger = logging.getLogger(__name__)

# SQLite file databases live under ./data
if settings.database_url.startswith("sqlite:///./data"):
    os.makedirs("data", exist_ok=True)

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables.
    
    Creates all tables defined in the models if they don't exist, then
    applies column migrations to tables created by older releases.
    Safe to call multiple times.
    """
    # Register models with Base
    from tokenhub.models import User, Token, Channel  # noqa: F401

    logger.info("Initializing database...")

    inspector = inspect(engine)
    existing_tables = inspector.get_table_names()

    if not existing_tables:
        logger.info("No existing tables found. Creating all tables...")
    else:
        logger.info(f"Found existing tables: {existing_tables}")

    Base.metadata.create_all(bind=engine)

    if existing_tables:
        logger.info("Running database migrations...")
        from tokenhub.database.migrations import migrate_database
        db = SessionLocal()
        try:
            migrate_database(db)
        finally:
            db.close()

    inspector = inspect(engine)
    logger.info(f"Database initialized with tables: {inspector.get_table_names()}")
