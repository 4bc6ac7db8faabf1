"""
Database base configuration and utilities.

This module provides the foundation for the free-address registry's storage
using Peewee ORM with a SQLite backend.

Components:
    - db: Global SQLite database instance
    - BaseModel: Base class for all enipam database models
    - initialize_database: Database setup function
    - close_database: Connection teardown
"""

import os

import peewee

from enipam.errors import RegistryError
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Database Instance
# =============================================================================

# Global database instance - path set via initialize_database()
db = peewee.SqliteDatabase(None)


# =============================================================================
# Base Model
# =============================================================================


class BaseModel(peewee.Model):
    """
    Base model for all enipam database models.

    All models inherit from this class to share the database connection.
    """

    class Meta:
        database = db


# =============================================================================
# Database Lifecycle
# =============================================================================


def initialize_database(db_path: str) -> None:
    """
    Connect to the database and create tables.

    Re-initializing with a different path closes the previous connection.

    Args:
        db_path: Path to the SQLite database file.

    Raises:
        RegistryError: If the file cannot be opened or is not a database.
    """
    # Import models here to avoid circular imports
    from enipam.db.registry import FreeAddress

    logger.debug(f"Initializing database at: {db_path}")

    close_database()
    directory = os.path.dirname(db_path)
    try:
        if directory:
            os.makedirs(directory, exist_ok=True)
        # Rollback journal keeps every commit atomic across crashes
        db.init(db_path, pragmas={"journal_mode": "delete", "synchronous": "full"})
        db.connect()
        db.create_tables([FreeAddress], safe=True)
        # Touch the table so a corrupt file fails here, not mid-operation
        FreeAddress.select().count()
    except (OSError, peewee.DatabaseError) as e:
        logger.error(f"Failed to initialize database '{db_path}': {e}")
        close_database()
        raise RegistryError(f"registry {db_path} is unreadable: {e}")

    logger.debug(f"Database initialized: {db_path}")


def close_database() -> None:
    """Close the database connection if open."""
    if db.database is not None and not db.is_closed():
        db.close()
        logger.debug("Database connection closed")
