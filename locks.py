"""Per-user write serialization.

Activity merges, quest progress updates and reward redemptions all
read-modify-write one user's rows. user_lock() serializes them per user id:
with REDIS_URL (or LOCK_REDIS_URL) set the lock lives in Redis and holds
across processes; otherwise it is a process-local threading.Lock.
"""

from __future__ import annotations

import os
import threading
import weakref
from contextlib import contextmanager

import redis
from flask import current_app

from errors import ConflictError


LOCK_TIMEOUT_SECONDS = 30
LOCK_WAIT_SECONDS = 10

# Entries drop out once no holder or waiter references the lock.
_local_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_local_guard = threading.Lock()
_redis_client = None


def _get_redis():
    global _redis_client
    url = os.getenv("LOCK_REDIS_URL") or os.getenv("REDIS_URL")
    if not url:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(url)
    return _redis_client


def _lock_key(user_id: str) -> str:
    return f"basequest:lock:user:{user_id}"


@contextmanager
def user_lock(user_id: str):
    key = _lock_key(user_id)
    client = _get_redis()

    if client is not None:
        lock = client.lock(key, timeout=LOCK_TIMEOUT_SECONDS, blocking_timeout=LOCK_WAIT_SECONDS)
        if not lock.acquire():
            raise ConflictError("Another request for this user is in progress, retry shortly", reason="busy")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                # Expired before release; the next holder already owns it.
                current_app.logger.warning("user lock %s expired before release", key)
        return

    with _local_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
    with lock:
        yield
