"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support
- Table definitions backing the ledger store
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, JSON, Text, Index, UniqueConstraint
from sqlalchemy.engine import make_url
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from backend.core.config import settings


logger = logging.getLogger("inkwell")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def use_database() -> bool:
    """True when a database is configured via the environment; otherwise stores run in memory."""
    return bool(os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL"))


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if make_url(url).get_backend_name() == "sqlite":
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def check_connection(engine=None) -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = engine or get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e.__class__.__name__}")
        return False


# Every ledger table carries a string primary key `key` and an optimistic
# `version` counter bumped on each write.

# User entitlement records (key = Clerk user id)
users = Table(
    'users',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('email', String(320), nullable=True),
    Column('name', Text, nullable=True),
    Column('avatar', Text, nullable=True),
    Column('bio', Text, nullable=True),
    Column('role', String(20), nullable=False, server_default='standard'),
    Column('usage_count', Integer, nullable=False, server_default='0'),
    Column('usage_reset_at', DateTime(timezone=True), nullable=False),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_users_role', 'role'),
    Index('idx_users_created_at', 'created_at'),
)

# Posts
posts = Table(
    'posts',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('author_id', String(100), nullable=False, index=True),
    Column('author_name', Text, nullable=True),
    Column('title', Text, nullable=False),
    Column('content', Text, nullable=False, server_default=''),
    Column('excerpt', Text, nullable=True),
    Column('category', String(100), nullable=True),
    Column('tags', JSON, nullable=True),
    Column('thumbnail', Text, nullable=True),
    Column('status', String(20), nullable=False, server_default='draft'),
    Column('views', Integer, nullable=False, server_default='0'),
    Column('like_count', Integer, nullable=False, server_default='0'),
    Column('comment_count', Integer, nullable=False, server_default='0'),
    Column('published_at', DateTime(timezone=True), nullable=True),
    Column('rejection_reason', Text, nullable=True),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Composite index for public listing pattern: (status, created_at)
    Index('idx_posts_status_created', 'status', 'created_at'),
    Index('idx_posts_author_created', 'author_id', 'created_at'),
)

# Comments
comments = Table(
    'comments',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('post_id', String(100), nullable=False, index=True),
    Column('author_id', String(100), nullable=False, index=True),
    Column('author_name', Text, nullable=True),
    Column('content', Text, nullable=False),
    Column('like_count', Integer, nullable=False, server_default='0'),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_comments_post_created', 'post_id', 'created_at'),
)

# Like relation: existence of (post_id, user_id) is authoritative
post_likes = Table(
    'post_likes',
    metadata,
    Column('key', String(210), primary_key=True),  # "{post_id}:{user_id}"
    Column('post_id', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('post_id', 'user_id', name='uq_post_likes_post_user'),
)

# Comment likes, same shape as post_likes
comment_likes = Table(
    'comment_likes',
    metadata,
    Column('key', String(210), primary_key=True),  # "{comment_id}:{user_id}"
    Column('comment_id', String(100), nullable=False, index=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('comment_id', 'user_id', name='uq_comment_likes_comment_user'),
)

# Identities removed by the identity provider; deletion wins over late events
tombstones = Table(
    'tombstones',
    metadata,
    Column('key', String(100), primary_key=True),
    Column('deleted_at', DateTime(timezone=True), nullable=False),
    Column('event_id', String(255), nullable=True),
    Column('version', Integer, nullable=False, server_default='1'),
)

# Webhook dedup window (event ids seen recently)
webhook_events = Table(
    'webhook_events',
    metadata,
    Column('event_id', String(255), primary_key=True),
    Column('source', String(20), nullable=False),
    Column('received_at', DateTime(timezone=True), nullable=False, index=True),
)

LEDGER_TABLES = {
    "users": users,
    "posts": posts,
    "comments": comments,
    "post_likes": post_likes,
    "comment_likes": comment_likes,
    "tombstones": tombstones,
}
