import threading

import pytest

from fieldbot.session_store import SessionStore


def make_store(clock, ttl=60.0, **kwargs):
    return SessionStore(ttl, clock=clock, **kwargs)


def test_put_get_delete(clock):
    store = make_store(clock)
    store.put(1, "a")
    assert store.get(1) == "a"
    assert 1 in store and len(store) == 1
    assert store.delete(1) == "a"
    assert store.get(1) is None
    assert store.delete(1) is None


def test_touch_refreshes_last_activity(clock):
    store = make_store(clock)
    store.put(1, "a")
    clock.advance(50)
    assert store.touch(1)
    clock.advance(50)
    assert not store.is_expired(1)
    assert store.touch(2) is False


def test_sweep_removes_only_idle_entries(clock):
    store = make_store(clock, ttl=10)
    store.put(1, "old")
    clock.advance(8)
    store.put(2, "new")
    clock.advance(5)
    removed = store.sweep()
    assert removed == [(1, "old")]
    assert store.get(2) == "new"


def test_entry_exactly_at_ttl_is_still_live(clock):
    store = make_store(clock, ttl=10)
    store.put(1, "a")
    clock.advance(10)
    assert store.sweep() == []
    clock.advance(0.001)
    assert store.sweep() == [(1, "a")]


def test_delete_if_stale_leaves_refreshed_entries(clock):
    store = make_store(clock, ttl=10)
    store.put(1, "a")
    decided_at = clock.now + 20
    clock.advance(15)
    store.touch(1)
    assert store.delete_if_stale(1, decided_at, 10) is None
    assert store.get(1) == "a"


def test_update_is_atomic_read_modify_write(clock):
    store = make_store(clock)
    assert store.update(1, lambda v: (v or 0) + 1) == 1
    assert store.update(1, lambda v: (v or 0) + 1) == 2
    assert store.update(1, lambda v: None) is None
    assert 1 not in store


def test_rejects_zero_shards(clock):
    with pytest.raises(ValueError):
        make_store(clock, shards=0)


def test_concurrent_updates_from_many_threads_are_not_lost(clock):
    store = make_store(clock, shards=4)
    per_thread = 500

    def work(key):
        for _ in range(per_thread):
            store.update(key % 3, lambda v: (v or 0) + 1)

    threads = [threading.Thread(target=work, args=(i,)) for i in range(9)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(v for _k, v, _t in store.snapshot()) == [3 * per_thread] * 3
