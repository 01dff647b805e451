"""
Database initialization script.

Creates the job tables if they don't exist yet. Equivalent to
`python main.py --migrate`.

Usage:
    python -m scripts.init_db

Environment variables:
    DATABASE_URL: SQLAlchemy URL (defaults to a local SQLite file)
"""

import sys
import logging
from pathlib import Path

# Add project root to path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from mediajobs.database.session import create_db_engine, init_db
from mediajobs.config.settings import get_settings
from mediajobs.db_base import Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init_database(database_url: str) -> None:
    """
    Initialize database tables.

    Existing tables are not modified.

    Args:
        database_url: SQLAlchemy connection URL
    """
    logger.info("Connecting to database...")
    engine = create_db_engine(database_url)

    try:
        # Test connection
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        logger.info("Database connection successful")
    except SQLAlchemyError as e:
        logger.error(f"Failed to connect to database: {e}")
        raise

    try:
        init_db(engine)
    except SQLAlchemyError as e:
        logger.error(f"Failed to create tables: {e}")
        raise

    # Log table status
    existing = set(inspect(engine).get_table_names())
    for table_name in sorted(Base.metadata.tables.keys()):
        status = "EXISTS" if table_name in existing else "MISSING"
        logger.info(f"  {table_name}: {status}")

    engine.dispose()


def main() -> int:
    try:
        init_database(get_settings().database_url)
    except SQLAlchemyError:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
