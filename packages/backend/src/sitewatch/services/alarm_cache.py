"""Global alarm cache — process-wide alarms and per-site unread counts.

Learn: The cache mirrors the "no site filter" alarm query, newest first.
It is fed only by the global RealtimeAlarmStore; everything else reads it
(unread badges, the /alarms/unread-counts endpoint).

unread_counts() always equals, for every site present in the collection,
the number of entries with that site and is_read == False. It is recomputed
on every mutation rather than adjusted incrementally, so it can't drift.

The lock is injected so callers on threads (or tests) can supply their own.
Listeners are notified after the lock is released, so a listener may read
the cache without deadlocking.
"""

import threading
from collections.abc import Callable, Iterable
from typing import Optional

import structlog

from sitewatch.schemas.alarm import AlarmRecord

logger = structlog.get_logger()

Listener = Callable[[], None]


# ─── Collection operations (shared with per-site stores) ──


def prepend_alarm(alarms: list[AlarmRecord], alarm: AlarmRecord) -> list[AlarmRecord]:
    """New alarm first; a redelivered id replaces the old entry."""
    return [alarm] + [a for a in alarms if a.id != alarm.id]


def replace_alarm(alarms: list[AlarmRecord], alarm: AlarmRecord) -> list[AlarmRecord]:
    return [alarm if a.id == alarm.id else a for a in alarms]


def remove_alarm(alarms: list[AlarmRecord], alarm_id: int) -> list[AlarmRecord]:
    return [a for a in alarms if a.id != alarm_id]


def count_unread_by_site(alarms: Iterable[AlarmRecord]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for alarm in alarms:
        counts.setdefault(alarm.site_id, 0)
        if not alarm.is_read:
            counts[alarm.site_id] += 1
    return counts


class GlobalAlarmCache:
    """Thread-safe alarm collection with derived unread counts."""

    def __init__(self, lock: Optional[threading.RLock] = None):
        self._lock = lock or threading.RLock()
        self._alarms: list[AlarmRecord] = []
        self._unread: dict[int, int] = {}
        self._listeners: list[Listener] = []

    # ─── Reads ────────────────────────────────────────────

    def alarms(self) -> list[AlarmRecord]:
        with self._lock:
            return list(self._alarms)

    def unread_counts(self) -> dict[int, int]:
        with self._lock:
            return dict(self._unread)

    def unread_count(self, site_id: int) -> int:
        with self._lock:
            return self._unread.get(site_id, 0)

    def total_unread(self) -> int:
        with self._lock:
            return sum(self._unread.values())

    # ─── Mutations ────────────────────────────────────────

    def replace_all(self, alarms: Iterable[AlarmRecord]) -> None:
        self._commit(lambda _: list(alarms))

    def apply_insert(self, alarm: AlarmRecord) -> None:
        self._commit(lambda current: prepend_alarm(current, alarm))

    def apply_update(self, alarm: AlarmRecord) -> None:
        self._commit(lambda current: replace_alarm(current, alarm))

    def apply_delete(self, alarm_id: int) -> None:
        self._commit(lambda current: remove_alarm(current, alarm_id))

    def clear(self) -> None:
        self._commit(lambda _: [])

    def _commit(self, mutate: Callable[[list[AlarmRecord]], list[AlarmRecord]]) -> None:
        with self._lock:
            self._alarms = mutate(self._alarms)
            self._unread = count_unread_by_site(self._alarms)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("alarm_cache.listener_failed")

    # ─── Listeners ────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)


# Singleton, fed by the global alarm store
_global_cache = GlobalAlarmCache()


def get_global_alarm_cache() -> GlobalAlarmCache:
    return _global_cache
