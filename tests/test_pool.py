"""Tests for the bounded task pool."""

import asyncio

import pytest

from crate_mirror.services.pool import BoundedTaskPool


def test_never_exceeds_max_parallel():
    active = 0
    observed = []

    async def work(i):
        nonlocal active
        active += 1
        observed.append(active)
        await asyncio.sleep(0.005)
        active -= 1

    async def run():
        async with BoundedTaskPool(4) as pool:
            for i in range(25):
                await pool.submit(work, i)
        return pool

    pool = asyncio.run(run())

    assert max(observed) == 4
    assert pool.peak_in_flight == 4
    assert pool.submitted == 25
    assert pool.in_flight == 0


def test_failures_do_not_stop_siblings():
    done = []

    async def work(i):
        await asyncio.sleep(0)
        if i % 3 == 0:
            raise RuntimeError(f"boom {i}")
        done.append(i)

    async def run():
        async with BoundedTaskPool(2, name="test") as pool:
            for i in range(9):
                await pool.submit(work, i)
        return pool

    pool = asyncio.run(run())

    assert sorted(done) == [1, 2, 4, 5, 7, 8]
    assert pool.crashed == 3


def test_permit_released_after_failure():
    async def fail():
        raise ValueError("nope")

    async def ok():
        return "fine"

    async def run():
        pool = BoundedTaskPool(1)
        await pool.submit(fail)
        # Would block forever if the failed task kept its permit.
        task = await asyncio.wait_for(pool.submit(ok), timeout=1)
        await pool.join()
        return await task

    assert asyncio.run(run()) == "fine"


def test_join_waits_for_all_work():
    finished = []

    async def work(i):
        await asyncio.sleep(0.01 * (i % 3))
        finished.append(i)

    async def run():
        pool = BoundedTaskPool(5)
        for i in range(10):
            await pool.submit(work, i)
        await pool.join()

    asyncio.run(run())
    assert sorted(finished) == list(range(10))


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        BoundedTaskPool(0)
