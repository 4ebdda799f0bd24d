"""Thread-safe in-memory conversation store with TTL and LRU eviction.

Design decisions
────────────────
• **OrderedDict** keyed by session id for O(1) LRU eviction and promotion.
• **Idle TTL**: a session untouched for ``ttl_seconds`` is dropped on the
  next access (or by ``purge_expired``).
• **Capacity**: at most ``max_sessions`` conversations are kept; the least
  recently used one is evicted first.
• **Append-only history**: each conversation is an immutable tuple that is
  only ever extended through ``merge_messages``.
• **Per-session locks** so that two requests for the same session run their
  turns one after the other instead of racing on the same history.  A lock
  lives only while some caller holds or waits on it (reference counted), so
  the lock table never outgrows the number of turns in flight.
• Purely ephemeral: history is lost on process restart.

Usage
─────
>>> store = ConversationStore(max_sessions=100, ttl_seconds=3600)
>>> with store.session_lock("abc"):
...     prior = store.get("abc")
...     store.append("abc", [HumanMessage("Hola"), AIMessage("¡Hola!")])
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from langchain_core.messages import AnyMessage

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class _SessionLock:
    """A turn lock plus the number of callers holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def merge_messages(
    prior: Sequence[AnyMessage] | None,
    new: Sequence[AnyMessage] | None,
) -> list[AnyMessage]:
    """Combine prior history with a batch of new messages.

    An empty (or missing) batch leaves the prior history unchanged;
    otherwise the batch is appended in order.  Used both by the store and
    as the reducer of the agent graph's ``messages`` channel.
    """
    prior_list = list(prior) if prior else []
    if not new:
        return prior_list
    return prior_list + list(new)


class ConversationStore:
    """Session id -> ordered message history, bounded by count and idle time."""

    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_sessions = max_sessions
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        # session_id → (messages, last_access)
        self._store: OrderedDict[str, tuple[tuple[AnyMessage, ...], float]] = OrderedDict()
        self._session_locks: dict[str, _SessionLock] = {}
        self._lock = threading.Lock()

    # ── Expiry helpers ───────────────────────────────────────────────

    def _is_expired(self, last_access: float, now: float) -> bool:
        return self._ttl_seconds > 0 and now - last_access > self._ttl_seconds

    def _drop(self, session_id: str) -> None:
        """Remove a session (caller holds ``self._lock``)."""
        self._store.pop(session_id, None)

    # ── Core operations ──────────────────────────────────────────────

    def get(self, session_id: str) -> list[AnyMessage]:
        """Return the history for *session_id* (empty for unseen/expired)."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return []
            messages, last_access = entry
            if self._is_expired(last_access, now):
                logger.debug("Session %s expired after %.0fs idle", session_id, now - last_access)
                self._drop(session_id)
                return []
            self._store[session_id] = (messages, now)
            self._store.move_to_end(session_id)
            return list(messages)

    def append(self, session_id: str, new_messages: Sequence[AnyMessage]) -> list[AnyMessage]:
        """Append *new_messages* to the session history and return the result."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(session_id)
            prior: tuple[AnyMessage, ...] = ()
            if entry is not None and not self._is_expired(entry[1], now):
                prior = entry[0]
            merged = tuple(merge_messages(prior, new_messages))

            if session_id in self._store:
                self._store.pop(session_id)
            while len(self._store) >= self._max_sessions and self._store:
                evicted_id, _ = self._store.popitem(last=False)
                logger.debug("Conversation store: evicted session %s", evicted_id)

            self._store[session_id] = (merged, now)
            return list(merged)

    def invalidate(self, session_id: str) -> bool:
        """Forget a single session.  Returns ``True`` if it existed."""
        with self._lock:
            existed = session_id in self._store
            self._drop(session_id)
            return existed

    def purge_expired(self) -> int:
        """Drop every expired session.  Returns count removed."""
        now = self._clock()
        with self._lock:
            expired = [
                sid for sid, (_, last_access) in self._store.items()
                if self._is_expired(last_access, now)
            ]
            for sid in expired:
                self._drop(sid)
            return len(expired)

    def clear(self) -> None:
        """Drop all sessions."""
        with self._lock:
            self._store.clear()

    # ── Turn serialization ───────────────────────────────────────────

    @contextmanager
    def session_lock(self, session_id: str) -> Iterator[None]:
        """Hold the turn lock for *session_id* for the duration of the block.

        The lock entry is registered (and its user count raised) under the
        store lock before it is acquired, and removed once the last user
        leaves.  Eviction and invalidation never touch it.
        """
        with self._lock:
            entry = self._session_locks.get(session_id)
            if entry is None:
                entry = _SessionLock()
                self._session_locks[session_id] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._session_locks[session_id]

    # ── Introspection ────────────────────────────────────────────────

    @property
    def session_count(self) -> int:
        """Number of sessions currently stored (expired ones included until purged)."""
        return len(self._store)

    @property
    def lock_count(self) -> int:
        """Number of sessions with a turn currently running or waiting."""
        return len(self._session_locks)

    def has(self, session_id: str) -> bool:
        """Check if a session is present *without* promoting it."""
        return session_id in self._store
