"""Database migration utilities."""

import logging
from typing import List, Tuple
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# (table, column, DDL type) added after the first release
TOKEN_COLUMN_MIGRATIONS: List[Tuple[str, str, str]] = [
    ("tokens", "group", "VARCHAR DEFAULT ''"),
    ("tokens", "group_priorities", "TEXT DEFAULT ''"),
    ("tokens", "auto_smart_group", "BOOLEAN DEFAULT 0"),
]


def migrate_database(db: Session) -> None:
    """Apply database migrations.
    
    Adds token columns that legacy databases are missing. Safe to call
    multiple times.
    
    Args:
        db: Database session.
    """
    logger.info("Checking for database migrations...")

    inspector = inspect(db.get_bind())
    tables = inspector.get_table_names()

    for table, column, ddl in TOKEN_COLUMN_MIGRATIONS:
        if table not in tables:
            continue
        columns = [col["name"] for col in inspector.get_columns(table)]
        if column in columns:
            continue

        logger.info(f"Adding {column} column to {table} table")
        try:
            db.execute(text(f'ALTER TABLE {table} ADD COLUMN "{column}" {ddl}'))
            db.commit()
            logger.info(f"Successfully added {column} column")
        except Exception as e:
            logger.error(f"Failed to add {column} column: {e}")
            db.rollback()

    logger.info("Database migrations complete")


def get_migration_status(db: Session) -> dict:
    """Get the status of database migrations.
    
    Args:
        db: Database session.
        
    Returns:
        Dictionary with the table list and applied column migrations.
    """
    inspector = inspect(db.get_bind())

    status = {
        "tables": inspector.get_table_names(),
        "migrations_applied": [],
    }

    for table, column, _ in TOKEN_COLUMN_MIGRATIONS:
        if table not in status["tables"]:
            continue
        columns = [col["name"] for col in inspector.get_columns(table)]
        if column in columns:
            status["migrations_applied"].append(f"{table}.{column}")

    return status
