"""
Per-client rate limiting for vote submissions and admin logins.

Counters are keyed by a hash of the client IP and kept in a RateLimitStore:
an in-process map by default, or the ``rate_limits`` table when counters must
survive restarts. Neither store synchronizes across processes.
"""
import hashlib
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from .errors import RateLimitError
from .models import RateLimitEntry, db

logger = logging.getLogger(__name__)

VOTE_MAX_PER_WINDOW = 10
VOTE_WINDOW_SECONDS = 60
LOGIN_MAX_ATTEMPTS = 5
LOGIN_LOCKOUT_SECONDS = 15 * 60
# Unlocked entries older than this are forgotten
STALE_ENTRY_SECONDS = LOGIN_LOCKOUT_SECONDS


def hash_client(ip: str) -> str:
    return hashlib.sha256((ip or 'unknown').encode('utf-8')).hexdigest()


class RateLimitStore:
    """Entries are dicts with ``count``, ``window_start`` and ``locked_until``."""

    def get(self, key: str) -> Optional[Dict]:
        raise NotImplementedError

    def set(self, key: str, entry: Dict) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


def is_stale(entry: Dict, now: float, max_age: float) -> bool:
    """No active lockout and the window opened more than ``max_age`` seconds ago."""
    locked_until = entry.get('locked_until')
    if locked_until and locked_until > now:
        return False
    return (entry.get('window_start') or 0) <= now - max_age


class MemoryRateLimitStore(RateLimitStore):
    """
    In-process map. Stale entries are swept every ``sweep_seconds`` or every
    ``sweep_writes`` writes, whichever comes first, so clients that never
    return do not keep their counters forever.
    """

    def __init__(self, max_age: float = STALE_ENTRY_SECONDS, sweep_seconds: float = 60,
                 sweep_writes: int = 1000, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, Dict] = {}
        self._lock = threading.Lock()
        self.max_age = max_age
        self.sweep_seconds = sweep_seconds
        self.sweep_writes = sweep_writes
        self.clock = clock
        self._last_sweep = clock()
        self._writes = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            return dict(entry) if entry else None

    def set(self, key, entry):
        with self._lock:
            self._entries[key] = dict(entry)
            self._writes += 1
            now = self.clock()
            if self._writes >= self.sweep_writes or now - self._last_sweep >= self.sweep_seconds:
                self._sweep(now)

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def _sweep(self, now: float) -> int:
        stale = [key for key, entry in self._entries.items() if is_stale(entry, now, self.max_age)]
        for key in stale:
            del self._entries[key]
        self._last_sweep = now
        self._writes = 0
        if stale:
            logger.debug(f"Swept {len(stale)} stale rate limit entries")
        return len(stale)


class DatabaseRateLimitStore(RateLimitStore):
    """Counters in the rate_limits table. Errors are logged and ignored."""

    def __init__(self, database=None):
        self.db = database or db

    def get(self, key):
        try:
            entry = self.db.session.get(RateLimitEntry, key)
            return entry.to_dict() if entry else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading rate limit entry: {e}", exc_info=True)
            self.db.session.rollback()
            return None

    def set(self, key, entry):
        try:
            row = self.db.session.get(RateLimitEntry, key) or RateLimitEntry(key=key)
            row.count = entry.get('count', 0)
            row.window_start = entry.get('window_start')
            row.locked_until = entry.get('locked_until')
            self.db.session.add(row)
            self.db.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error saving rate limit entry: {e}", exc_info=True)
            self.db.session.rollback()

    def delete(self, key):
        try:
            RateLimitEntry.query.filter_by(key=key).delete()
            self.db.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting rate limit entry: {e}", exc_info=True)
            self.db.session.rollback()

    def cleanup_expired(self, max_age: float = STALE_ENTRY_SECONDS, now: Optional[float] = None) -> int:
        """Delete stale counters (call periodically)"""
        now = time.time() if now is None else now
        try:
            expired = RateLimitEntry.query.filter(
                or_(RateLimitEntry.locked_until.is_(None), RateLimitEntry.locked_until <= now),
                or_(RateLimitEntry.window_start.is_(None), RateLimitEntry.window_start <= now - max_age),
            ).delete(synchronize_session='fetch')
            self.db.session.commit()
            if expired:
                logger.info(f"✅ Cleaned up {expired} stale rate limit entries")
            return expired
        except SQLAlchemyError as e:
            logger.error(f"Error cleaning up rate limit entries: {e}", exc_info=True)
            self.db.session.rollback()
            return 0


class VoteRateLimiter:
    """At most ``max_votes`` submissions per IP in a fixed window opened by the first one."""

    def __init__(self, store: RateLimitStore, max_votes: int = VOTE_MAX_PER_WINDOW,
                 window_seconds: int = VOTE_WINDOW_SECONDS, clock: Callable[[], float] = time.time):
        self.store = store
        self.max_votes = max_votes
        self.window_seconds = window_seconds
        self.clock = clock

    def hit(self, ip: str) -> None:
        key = f"vote:{hash_client(ip)}"
        now = self.clock()
        entry = self.store.get(key)
        if entry is None:
            self.store.set(key, {'count': 1, 'window_start': now, 'locked_until': None})
            return
        if now - (entry.get('window_start') or 0) > self.window_seconds:
            entry = {'count': 0, 'window_start': now, 'locked_until': None}
        if entry['count'] >= self.max_votes:
            logger.warning(f"⚠ Vote rate limit reached for client {key[5:17]}")
            raise RateLimitError("Você está votando muito rápido. Aguarde um momento.")
        entry['count'] += 1
        self.store.set(key, entry)


class LoginRateLimiter:
    """Locks an IP out for ``lockout_seconds`` after ``max_attempts`` consecutive failures."""

    def __init__(self, store: RateLimitStore, max_attempts: int = LOGIN_MAX_ATTEMPTS,
                 lockout_seconds: int = LOGIN_LOCKOUT_SECONDS, clock: Callable[[], float] = time.time):
        self.store = store
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.clock = clock

    @staticmethod
    def _key(ip: str) -> str:
        return f"login:{hash_client(ip)}"

    def check(self, ip: str) -> None:
        key = self._key(ip)
        entry = self.store.get(key)
        if not entry or not entry.get('locked_until'):
            return
        now = self.clock()
        if now < entry['locked_until']:
            remaining = math.ceil((entry['locked_until'] - now) / 60)
            raise RateLimitError(f"Muitas tentativas de login. Tente novamente em {remaining} minutos.")
        # lockout expired
        self.store.delete(key)

    def register_failure(self, ip: str) -> int:
        key = self._key(ip)
        now = self.clock()
        entry = self.store.get(key)
        # An expired lockout or failures older than the lockout period start over
        if entry is None or is_stale(entry, now, self.lockout_seconds):
            entry = {'count': 0, 'window_start': now, 'locked_until': None}
        entry['count'] += 1
        if entry['count'] >= self.max_attempts:
            entry['locked_until'] = now + self.lockout_seconds
            logger.warning(f"⚠ Login locked for client {key[6:18]} after {entry['count']} failed attempts")
        self.store.set(key, entry)
        return entry['count']

    def register_success(self, ip: str) -> None:
        self.store.delete(self._key(ip))

    def attempts(self, ip: str) -> int:
        entry = self.store.get(self._key(ip))
        return entry['count'] if entry else 0
