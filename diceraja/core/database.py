"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with bounded timeouts
- Test database support
- Table definitions for accounts and daily rewards
"""
from typing import Optional
from contextlib import contextmanager
import logging
import os

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    Index,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from diceraja.core.config import settings

logger = logging.getLogger("diceraja")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
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

    return settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sessions hop between the event loop and the threadpool under FastAPI
        return {"connect_args": {"check_same_thread": False, "timeout": settings.DB_POOL_TIMEOUT_SECONDS}}

    options = {
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,
    }
    if url.startswith("postgresql"):
        options["connect_args"] = {
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }
    return options


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

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(url, echo=False, **_engine_options(url))
    logger.info(f"Database engine initialized (dialect={_engine.dialect.name})")

    # Create session factory
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

    Commits on a clean exit, rolls back on any exception.

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


# Standard accounts
users = Table(
    'users',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', String(50), nullable=False),
    Column('email', String(255), nullable=False, unique=True),
    Column('phone', String(10), nullable=False),
    Column('password_hash', String(60), nullable=False),
    Column('state', String(100), nullable=False),
    Column('city', String(100), nullable=False),
    Column('role', String(20), nullable=False, server_default='user'),
    Column('tokens', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('tokens >= 0', name='ck_users_tokens_non_negative'),
)

# Gamer accounts (membership with joining fee and expiry)
gamers = Table(
    'gamers',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', String(50), nullable=False),
    Column('email', String(255), nullable=False, unique=True),
    Column('phone', String(10), nullable=False),
    Column('password_hash', String(60), nullable=False),
    Column('state', String(100), nullable=False),
    Column('city', String(100), nullable=False),
    Column('role', String(20), nullable=False, server_default='gamer'),
    Column('tokens', Integer, nullable=False, server_default='0'),
    Column('group', String(20), nullable=False),
    Column('terms_accepted', Boolean, nullable=False, server_default='false'),
    Column('policy_accepted', Boolean, nullable=False, server_default='false'),
    Column('joining_fees', Integer, nullable=False, server_default='0'),
    Column('joining_date', DateTime(timezone=True), nullable=False),
    Column('expiry_date', DateTime(timezone=True), nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='true'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('tokens >= 0', name='ck_gamers_tokens_non_negative'),
)

# Daily reward state, one row per (account_kind, account_id)
daily_rewards = Table(
    'daily_rewards',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('account_kind', String(20), nullable=False),
    Column('account_id', String(36), nullable=False),
    Column('last_visit_date', Date, nullable=False),
    Column('current_streak', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('account_kind', 'account_id', name='uq_daily_rewards_account'),
    CheckConstraint('current_streak >= 1', name='ck_daily_rewards_streak_positive'),
)

# Append-only reward log
daily_reward_history = Table(
    'daily_reward_history',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('reward_id', Integer, ForeignKey('daily_rewards.id', ondelete='CASCADE'), nullable=False),
    Column('claimed_on', Date, nullable=False),
    Column('tokens', Integer, nullable=False),
    Column('streak_day', Integer, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Composite index for "most recent N entries" reads
    Index('idx_daily_reward_history_reward_id', 'reward_id', 'id'),
)
