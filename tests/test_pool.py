import asyncio
import random

import pytest

from services.errors import CreationFailed, PoolClosed
from services.pool import InstancePool
from fakes import FakeInstance, FakeLauncher


@pytest.mark.asyncio
async def test_reuses_released_instance():
    launcher = FakeLauncher()
    pool = InstancePool(launcher, max_size=2)

    a = await pool.acquire()
    await pool.release(a)
    b = await pool.acquire()

    assert a is b
    assert len(launcher.launched) == 1
    assert a.resets == 1


@pytest.mark.asyncio
async def test_third_caller_waits_until_release():
    pool = InstancePool(FakeLauncher(), max_size=2)
    a = await pool.acquire()
    b = await pool.acquire()

    third = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0.01)
    assert not third.done()
    assert pool.waiting == 1
    assert pool.active_count == 2

    await pool.release(b)
    got = await asyncio.wait_for(third, 1)
    assert got is b
    assert pool.idle_count == 0
    await pool.release(a)
    await pool.release(got)


@pytest.mark.asyncio
async def test_waiters_served_in_arrival_order():
    pool = InstancePool(FakeLauncher(), max_size=1)
    held = await pool.acquire()
    order = []

    async def waiter(name):
        inst = await pool.acquire()
        order.append(name)
        await asyncio.sleep(0)
        await pool.release(inst)

    tasks = []
    for name in ('first', 'second', 'third'):
        tasks.append(asyncio.create_task(waiter(name)))
        await asyncio.sleep(0)

    await pool.release(held)
    await asyncio.wait_for(asyncio.gather(*tasks), 1)
    assert order == ['first', 'second', 'third']


@pytest.mark.asyncio
async def test_active_count_never_exceeds_max_size():
    random.seed(7)
    launcher = FakeLauncher(delay=0.001)
    pool = InstancePool(launcher, max_size=3)
    peak = 0
    on_loan = set()

    async def worker():
        nonlocal peak
        for _ in range(10):
            inst = await pool.acquire()
            assert inst.id not in on_loan
            on_loan.add(inst.id)
            peak = max(peak, pool.active_count)
            assert pool.active_count <= pool.max_size
            await asyncio.sleep(random.random() / 500)
            on_loan.discard(inst.id)
            await pool.release(inst)

    await asyncio.wait_for(asyncio.gather(*(worker() for _ in range(12))), 10)
    assert peak <= 3
    assert len(launcher.launched) <= 3
    assert pool.active_count <= 3


@pytest.mark.asyncio
async def test_creation_failure_propagates_and_frees_slot():
    launcher = FakeLauncher(fail=1)
    pool = InstancePool(launcher, max_size=1)

    with pytest.raises(CreationFailed):
        await pool.acquire()
    assert pool.active_count == 0

    inst = await pool.acquire()
    assert inst.id == 1
    assert pool.active_count == 1


@pytest.mark.asyncio
async def test_cleanup_failure_discards_instance_and_serves_waiter():
    launcher = FakeLauncher(make=lambda n: FakeInstance(n, reset_error=RuntimeError('boom') if n == 1 else None))
    pool = InstancePool(launcher, max_size=1)
    broken = await pool.acquire()

    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0)
    await pool.release(broken)

    fresh = await asyncio.wait_for(waiter, 1)
    assert broken.closed
    assert fresh is not broken
    assert fresh.id == 2
    assert pool.active_count == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_queue():
    pool = InstancePool(FakeLauncher(), max_size=1)
    held = await pool.acquire()
    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0)
    assert pool.waiting == 1

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert pool.waiting == 0

    await pool.release(held)
    assert pool.idle_count == 1


@pytest.mark.asyncio
async def test_shutdown_closes_idle_and_fails_waiters():
    launcher = FakeLauncher()
    pool = InstancePool(launcher, max_size=2)
    a = await pool.acquire()
    b = await pool.acquire()
    await pool.release(a)
    waiter = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0)
    # a went to idle before the waiter queued, so it picked a up
    assert (await asyncio.wait_for(waiter, 1)) is a

    late = asyncio.create_task(pool.acquire())
    await asyncio.sleep(0)
    await pool.shutdown()

    with pytest.raises(PoolClosed):
        await late
    assert pool.active_count == 0
    with pytest.raises(PoolClosed):
        await pool.acquire()

    # loans returned after shutdown are closed, not pooled
    await pool.release(a)
    await pool.release(b)
    assert a.closed and b.closed
    assert pool.idle_count == 0
    assert pool.active_count == 0


@pytest.mark.asyncio
async def test_lease_releases_on_error():
    pool = InstancePool(FakeLauncher(), max_size=1)
    with pytest.raises(ValueError):
        async with pool.lease():
            raise ValueError('extraction blew up')
    assert pool.idle_count == 1
    assert pool.stats()['active'] == 1
