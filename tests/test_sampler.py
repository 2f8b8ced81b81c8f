import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from facepalm.detector import EstimationError
from facepalm.frame import ImageHandle, Nv21Buffer
from facepalm.pose import Pose
from facepalm.sampler import FrameSampler

from conftest import BlockingEstimator, make_handle


async def _settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_burst_while_outstanding_is_dropped():
    async def scenario():
        estimator = BlockingEstimator()
        results, failures = [], []
        sampler = FrameSampler(estimator, results.append, failures.append)

        accepted = [sampler.offer(make_handle()) for _ in range(10)]
        assert accepted == [True] + [False] * 9
        assert sampler.outstanding

        await _settle()
        assert estimator.calls == 1

        estimator.gate.set()
        await sampler.drain()

        assert not sampler.outstanding
        assert len(results) == 1
        assert failures == []
        assert estimator.max_active == 1

        stats = sampler.stats
        assert stats.received == 10
        assert stats.dispatched == 1
        assert stats.dropped == 9

    asyncio.run(scenario())


def test_sampling_reopens_after_completion():
    async def scenario():
        estimator = BlockingEstimator()
        estimator.gate.set()
        results = []
        sampler = FrameSampler(estimator, results.append, lambda e: None)

        for _ in range(3):
            assert sampler.offer(make_handle()) is True
            await sampler.drain()

        assert estimator.calls == 3
        assert [pose.frame_id for pose in results] == [1, 2, 3]

    asyncio.run(scenario())


def test_failure_clears_flag_and_is_reported():
    async def scenario():
        failures, results = [], []

        async def failing(frame):
            raise EstimationError("model crashed")

        sampler = FrameSampler(failing, results.append, failures.append)
        assert sampler.offer(make_handle())
        await sampler.drain()

        assert not sampler.outstanding
        assert len(failures) == 1
        assert isinstance(failures[0], EstimationError)
        assert results == []
        assert sampler.stats.failed == 1

        # 下一帧即为重试
        assert sampler.offer(make_handle())
        await sampler.drain()
        assert sampler.stats.failed == 2

    asyncio.run(scenario())


def test_unrecognized_frame_is_discarded_silently():
    async def scenario():
        estimator = BlockingEstimator()
        estimator.gate.set()
        sampler = FrameSampler(estimator, lambda p: None, lambda e: None)

        assert sampler.offer(Nv21Buffer(b"\x00", width=4, height=4)) is False
        assert sampler.offer(ImageHandle(np.zeros((2, 2), dtype=np.float64))) is False
        assert not sampler.outstanding
        await _settle()
        assert estimator.calls == 0
        assert sampler.stats.unrecognized == 2

        # 采样继续
        assert sampler.offer(make_handle()) is True
        await sampler.drain()
        assert estimator.calls == 1

    asyncio.run(scenario())


def test_frames_are_released():
    async def scenario():
        released = []
        estimator = BlockingEstimator()
        sampler = FrameSampler(estimator, lambda p: None, lambda e: None)

        sampler.offer(make_handle(release=lambda: released.append("first")))
        sampler.offer(make_handle(release=lambda: released.append("dropped")))
        assert released == ["dropped"]

        await _settle()
        estimator.gate.set()
        await sampler.drain()
        assert released == ["dropped", "first"]

    asyncio.run(scenario())


def test_offers_from_many_threads_dispatch_once():
    async def scenario():
        loop = asyncio.get_running_loop()
        estimator = BlockingEstimator()
        sampler = FrameSampler(estimator, lambda p: None, lambda e: None, loop=loop)
        start = threading.Barrier(4)

        def burst():
            start.wait()
            return [sampler.offer(make_handle()) for _ in range(50)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            batches = await asyncio.gather(*[loop.run_in_executor(pool, burst) for _ in range(4)])

        accepted = [ok for batch in batches for ok in batch]
        assert accepted.count(True) == 1

        await _settle()
        assert estimator.calls == 1
        estimator.gate.set()
        await sampler.drain()
        assert estimator.max_active == 1
        assert sampler.stats.dropped == 199

    asyncio.run(scenario())


def test_drain_waits_for_spawn_from_other_thread():
    async def scenario():
        loop = asyncio.get_running_loop()
        estimator = BlockingEstimator()
        estimator.gate.set()
        results = []
        sampler = FrameSampler(estimator, results.append, lambda e: None, loop=loop)

        for expected in (1, 2):
            # join 阻塞事件循环，任务尚未在循环上创建
            worker = threading.Thread(target=sampler.offer, args=(make_handle(),))
            worker.start()
            worker.join()
            assert sampler.outstanding

            await sampler.drain()
            assert not sampler.outstanding
            assert len(results) == expected

    asyncio.run(scenario())


def test_run_consumes_finite_source_and_waits():
    async def scenario():
        results = []

        async def estimate(frame):
            await asyncio.sleep(0)
            return Pose(frame_id=frame.frame_id)

        sampler = FrameSampler(estimate, results.append, lambda e: None)
        await sampler.run(make_handle() for _ in range(20))

        assert not sampler.outstanding
        assert len(results) == sampler.stats.dispatched
        assert sampler.stats.received == 20
        assert sampler.stats.dispatched + sampler.stats.dropped == 20

    asyncio.run(scenario())


def test_run_accepts_async_source():
    async def scenario():
        results = []

        async def source():
            for _ in range(3):
                yield make_handle()
                await asyncio.sleep(0)

        async def estimate(frame):
            return Pose(frame_id=frame.frame_id)

        sampler = FrameSampler(estimate, results.append, lambda e: None)
        await sampler.run(source())
        assert len(results) >= 1

    asyncio.run(scenario())


def test_raising_result_callback_still_clears_flag():
    async def scenario():
        async def estimate(frame):
            return Pose()

        def bad(pose):
            raise ValueError("consumer broke")

        sampler = FrameSampler(estimate, bad, lambda e: None)
        sampler.offer(make_handle())
        await sampler.drain()
        assert not sampler.outstanding

    asyncio.run(scenario())


def test_offer_without_loop_raises():
    sampler = FrameSampler(lambda frame: None, lambda p: None, lambda e: None)
    with pytest.raises(RuntimeError):
        sampler.offer(make_handle())
