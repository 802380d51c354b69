"""Global alarm cache — derived unread counts and change listeners."""

from sitewatch.services.alarm_cache import GlobalAlarmCache, count_unread_by_site

from helpers import make_alarm


def test_unread_counts_track_every_mutation(alarm_cache):
    alarm_cache.replace_all([make_alarm(1, 7), make_alarm(2, 7, read=True), make_alarm(3, 8)])
    assert alarm_cache.unread_counts() == {7: 1, 8: 1}
    assert alarm_cache.total_unread() == 2

    alarm_cache.apply_insert(make_alarm(4, 7))
    assert alarm_cache.unread_count(7) == 2

    alarm_cache.apply_update(make_alarm(1, 7, read=True))
    alarm_cache.apply_update(make_alarm(4, 7, read=True))
    assert alarm_cache.unread_counts() == {7: 0, 8: 1}

    alarm_cache.apply_delete(3)
    assert alarm_cache.unread_counts() == {7: 0}
    assert alarm_cache.unread_count(8) == 0


def test_insert_is_newest_first_and_dedupes(alarm_cache):
    alarm_cache.replace_all([make_alarm(1), make_alarm(2)])
    alarm_cache.apply_insert(make_alarm(3))
    alarm_cache.apply_insert(make_alarm(1, read=True))

    assert [a.id for a in alarm_cache.alarms()] == [1, 3, 2]
    assert alarm_cache.alarms()[0].is_read is True


def test_update_for_unknown_id_is_ignored(alarm_cache):
    alarm_cache.replace_all([make_alarm(1)])
    alarm_cache.apply_update(make_alarm(99))
    assert [a.id for a in alarm_cache.alarms()] == [1]


def test_alarms_returns_a_copy(alarm_cache):
    alarm_cache.replace_all([make_alarm(1)])
    alarm_cache.alarms().clear()
    assert len(alarm_cache.alarms()) == 1


def test_listeners_notified_and_removable(alarm_cache):
    calls = []
    unsubscribe = alarm_cache.subscribe(lambda: calls.append(alarm_cache.total_unread()))

    alarm_cache.apply_insert(make_alarm(1))
    alarm_cache.apply_insert(make_alarm(2))
    assert calls == [1, 2]

    unsubscribe()
    alarm_cache.clear()
    assert calls == [1, 2]
    assert alarm_cache.alarms() == []


def test_failing_listener_does_not_block_others(alarm_cache):
    calls = []

    def broken():
        raise RuntimeError("listener bug")

    alarm_cache.subscribe(broken)
    alarm_cache.subscribe(lambda: calls.append("ok"))
    alarm_cache.apply_insert(make_alarm(1))
    assert calls == ["ok"]


def test_injected_lock_is_used():
    class CountingLock:
        def __init__(self):
            self.entries = 0

        def __enter__(self):
            self.entries += 1

        def __exit__(self, *exc):
            return False

    lock = CountingLock()
    cache = GlobalAlarmCache(lock=lock)
    cache.apply_insert(make_alarm(1))
    cache.unread_counts()
    assert lock.entries == 2


def test_count_unread_includes_sites_with_zero():
    assert count_unread_by_site([make_alarm(1, 7, read=True)]) == {7: 0}
    assert count_unread_by_site([]) == {}
