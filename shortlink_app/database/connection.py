"""
SQLAlchemy engine and session setup for the transactional database.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base

from shortlink_app.config import settings


def create_db_engine(database_url: str = None):
    """Create an engine; SQLite needs check_same_thread off for worker threads."""
    database_url = database_url or settings.database_url
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = create_db_engine()

Base = declarative_base()
