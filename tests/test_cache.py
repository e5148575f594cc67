import threading
import time

import pytest

from utils.cache import TTLCache


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def test_put_then_get_until_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.put('AAPL', 'r', ttl=60)

    assert cache.get('AAPL') == 'r'
    assert cache.get('aapl') == 'r'

    clock.advance(59.9)
    assert cache.get('AAPL') == 'r'
    clock.advance(0.1)
    assert cache.get('AAPL') is None
    assert len(cache) == 0


def test_overwrite_refreshes_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.put('KO', 'old')
    clock.advance(50)
    cache.put('KO', 'new')
    clock.advance(50)
    assert cache.get('KO') == 'new'


def test_invalidate_and_invalidate_all():
    cache = TTLCache(ttl_seconds=60)
    for t in ('AAPL', 'MSFT', 'KO'):
        cache.put(t, t.lower())

    assert cache.invalidate('msft') is True
    assert cache.invalidate('MSFT') is False
    assert cache.get('MSFT') is None

    cache.invalidate_all()
    assert len(cache) == 0
    assert cache.get('AAPL') is None
    assert cache.get('KO') is None


def test_full_store_sweeps_then_evicts_soonest_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, maxsize=2, clock=clock)
    cache.put('A', 1, ttl=10)
    cache.put('B', 2, ttl=100)
    cache.put('C', 3)
    assert cache.get('A') is None
    assert cache.get('B') == 2

    clock.advance(20)
    cache.put('D', 4)
    assert cache.get('C') is None
    assert cache.get('B') == 2
    assert cache.get('D') == 4


def test_sweep_removes_only_expired():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=60, clock=clock)
    cache.put('A', 1, ttl=5)
    cache.put('B', 2, ttl=500)
    clock.advance(10)
    assert cache.sweep() == 1
    assert cache.get('B') == 2


def test_get_or_load_reports_cache_hits():
    cache = TTLCache(ttl_seconds=60)
    calls = []

    def loader(key):
        calls.append(key)
        return f'data:{key}'

    assert cache.get_or_load('ko', loader) == ('data:KO', False)
    assert cache.get_or_load('KO', loader) == ('data:KO', True)
    assert calls == ['KO']
    stats = cache.stats()
    assert stats['hits'] == 1 and stats['misses'] == 1 and stats['keys'] == 1


def test_concurrent_misses_share_one_load():
    cache = TTLCache(ttl_seconds=60)
    started = threading.Event()
    release = threading.Event()
    calls = []

    def loader(key):
        calls.append(key)
        started.set()
        release.wait(2)
        return 'shared'

    results = []

    def worker():
        results.append(cache.get_or_load('AAPL', loader))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    threads[0].start()
    started.wait(2)
    for t in threads[1:]:
        t.start()
    time.sleep(0.05)
    assert cache.stats()['inflight'] == 1
    release.set()
    for t in threads:
        t.join(2)

    assert calls == ['AAPL']
    assert [r for r, _ in results] == ['shared'] * 5
    assert cache.stats()['inflight'] == 0


def test_concurrent_misses_share_the_error_and_do_not_cache_it():
    cache = TTLCache(ttl_seconds=60)
    started = threading.Event()
    release = threading.Event()
    errors = []

    def failing(key):
        started.set()
        release.wait(2)
        raise RuntimeError('source down')

    def worker():
        try:
            cache.get_or_load('MSFT', failing)
        except RuntimeError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(3)]
    threads[0].start()
    started.wait(2)
    for t in threads[1:]:
        t.start()
    time.sleep(0.05)
    release.set()
    for t in threads:
        t.join(2)

    assert len(errors) == 3
    assert len({id(e) for e in errors}) == 1
    assert cache.get('MSFT') is None
    assert cache.get_or_load('MSFT', lambda k: 'ok') == ('ok', False)
