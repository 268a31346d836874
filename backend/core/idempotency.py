"""
backend/core/idempotency.py
Webhook dedup window: a bounded, time-windowed set of recently seen event ids.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.core.clock import as_utc, utc_now
from backend.core.config import settings
from backend.core.database import get_db_session, use_database, webhook_events


logger = logging.getLogger("inkwell")

# In-memory fallback: key -> first seen, oldest first
_in_memory_keys: "OrderedDict[str, datetime]" = OrderedDict()
_lock = threading.Lock()


def _ttl() -> timedelta:
    return timedelta(seconds=settings.WEBHOOK_DEDUP_TTL_SECONDS)


def _prune_in_memory(now: datetime) -> None:
    cutoff = now - _ttl()
    # Insertion order is arrival order, so expired keys sit at the front
    while _in_memory_keys and next(iter(_in_memory_keys.values())) < cutoff:
        _in_memory_keys.popitem(last=False)
    while len(_in_memory_keys) > settings.WEBHOOK_DEDUP_MAX_KEYS:
        _in_memory_keys.popitem(last=False)


def check_and_set(key: str, source: str = "generic", now: Optional[datetime] = None) -> bool:
    """
    Check if an event id was seen inside the window, and record it if not (atomic).

    Args:
        key: Provider event id
        source: Event source (stripe, clerk), stored for debugging
        now: Override for the current time

    Returns:
        True if key was already seen (duplicate delivery)
        False if key is new (first time seeing it)
    """
    now = as_utc(now) if now else utc_now()

    if use_database():
        try:
            with get_db_session() as session:
                session.execute(delete(webhook_events).where(webhook_events.c.received_at < now - _ttl()))
        except SQLAlchemyError as e:
            logger.warning(f"Dedup window prune failed: {e.__class__.__name__}")

        try:
            with get_db_session() as session:
                session.execute(
                    webhook_events.insert().values(event_id=key, source=source, received_at=now)
                )
            return False
        except IntegrityError:
            return True
        except SQLAlchemyError as e:
            # Fail open: the reconciler tolerates a repeated event
            logger.warning(f"Dedup check failed for {source} event, processing anyway: {e.__class__.__name__}")
            return False

    with _lock:
        _prune_in_memory(now)
        seen = _in_memory_keys.get(key)
        if seen is not None and seen >= now - _ttl():
            return True
        # Expired keys queued behind fresher ones are replaced, not matched
        _in_memory_keys.pop(key, None)
        _in_memory_keys[key] = now
        _prune_in_memory(now)
        return False


def release(key: str) -> None:
    """Forget a key so a redelivery is processed (used after a transient failure)."""
    if use_database():
        try:
            with get_db_session() as session:
                session.execute(delete(webhook_events).where(webhook_events.c.event_id == key))
        except SQLAlchemyError as e:
            logger.warning(f"Dedup release failed: {e.__class__.__name__}")
    with _lock:
        _in_memory_keys.pop(key, None)


def check_key(key: str, now: Optional[datetime] = None) -> bool:
    """
    Check if an event id is inside the window (read-only).

    Returns:
        True if key exists, False otherwise
    """
    now = as_utc(now) if now else utc_now()
    cutoff = now - _ttl()
    if use_database():
        try:
            with get_db_session() as session:
                row = session.execute(
                    select(webhook_events.c.received_at).where(webhook_events.c.event_id == key)
                ).first()
                return row is not None and as_utc(row.received_at) >= cutoff
        except SQLAlchemyError:
            return False
    with _lock:
        seen = _in_memory_keys.get(key)
        return seen is not None and seen >= cutoff


def clear_all_keys() -> None:
    """Clear all dedup keys (testing only)."""
    if use_database():
        try:
            with get_db_session() as session:
                session.execute(delete(webhook_events))
        except SQLAlchemyError:
            pass
    with _lock:
        _in_memory_keys.clear()
