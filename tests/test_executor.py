"""
节点执行器测试 — 覆盖：
  1. 分阶段推进与进度单调性 (Phased Advance & Monotonic Progress)
  2. 失败路径：fail()、step hook 异常、单节点超时
  3. 取消路径：任务取消后记录 CANCELLED
  4. 单写者纪律：执行期间独占写权限，结束后释放

运行方式:
    pytest tests/test_executor.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from dag.executor import ExecutionTimings, NodeExecutor, NodeFailure
from dag.status_store import StatusStore, WriterConflictError
from schema import JobStatus

FAST = ExecutionTimings(queue_delay=0.001, init_delay=0.001, progress_step=10, progress_step_delay=0.001)


def _recording_store(*node_ids: str) -> tuple[StatusStore, list]:
    store = StatusStore(node_ids)
    events: list = []
    store.subscribe(events.append)
    return store, events


# ======================================================================
# Timings
# ======================================================================


class TestExecutionTimings:

    def test_progress_points_end_at_100(self):
        assert ExecutionTimings(progress_step=10).progress_points() == list(range(0, 101, 10))
        assert ExecutionTimings(progress_step=30).progress_points() == [0, 30, 60, 90, 100]
        assert ExecutionTimings(progress_step=100).progress_points() == [0, 100]

    @pytest.mark.parametrize("step", [0, -5, 101])
    def test_invalid_step_rejected(self, step):
        with pytest.raises(ValueError):
            ExecutionTimings(progress_step=step)

    def test_negative_dwell_rejected(self):
        with pytest.raises(ValueError):
            ExecutionTimings(queue_delay=-1)

    def test_longest_dwell(self):
        assert ExecutionTimings().longest_dwell == pytest.approx(1.5)
        assert FAST.longest_dwell == pytest.approx(0.001)

    def test_scaled_keeps_step(self):
        scaled = ExecutionTimings().scaled(0.1)
        assert scaled.progress_step == 10
        assert scaled.queue_delay == pytest.approx(0.08)
        assert scaled.init_delay == pytest.approx(0.15)


# ======================================================================
# Happy path
# ======================================================================


class TestExecutorHappyPath:

    @pytest.mark.asyncio
    async def test_walks_every_phase_in_order(self):
        store, events = _recording_store("n")
        status = await NodeExecutor("n", store, timings=FAST).run()

        assert status == JobStatus.COMPLETED
        transitions = [e.status for e in events if e.status != e.previous]
        assert transitions == [
            JobStatus.QUEUED,
            JobStatus.INITIALIZING,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_reaches_100(self):
        store, events = _recording_store("n")
        await NodeExecutor("n", store, timings=FAST).run()

        processing = [e.progress for e in events if e.status == JobStatus.PROCESSING]
        assert processing == sorted(processing)
        assert processing[-1] == 100
        assert events[0].status == JobStatus.QUEUED and events[0].progress == 0
        assert store.get("n").progress == 100
        assert store.get("n").status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_step_hook_sees_every_increment(self):
        store, _ = _recording_store("n")
        seen: list[int] = []

        async def hook(node_id: str, progress: int) -> None:
            seen.append(progress)

        await NodeExecutor("n", store, timings=FAST, step_hook=hook).run()
        assert seen == FAST.progress_points()

    @pytest.mark.asyncio
    async def test_writer_held_during_run_and_released_after(self):
        store, _ = _recording_store("n")
        holding: list[bool] = []

        async def hook(node_id: str, progress: int) -> None:
            holding.append(store.has_writer(node_id))

        await NodeExecutor("n", store, timings=FAST, step_hook=hook).run()
        assert all(holding)
        assert not store.has_writer("n")

    @pytest.mark.asyncio
    async def test_refuses_to_run_without_exclusive_writer(self):
        store, _ = _recording_store("n")
        store.claim("n")
        with pytest.raises(WriterConflictError):
            await NodeExecutor("n", store, timings=FAST).run()


# ======================================================================
# Failure & cancellation
# ======================================================================


class TestExecutorFailure:

    @pytest.mark.asyncio
    async def test_fail_before_start_never_queues(self):
        store, events = _recording_store("n")
        executor = NodeExecutor("n", store, timings=FAST)
        executor.fail("stop")
        assert await executor.run() == JobStatus.FAILED
        assert [e.status for e in events] == [JobStatus.FAILED]
        assert executor.error == "stop"

    @pytest.mark.asyncio
    async def test_fail_mid_processing_stops_progress(self):
        store, events = _recording_store("n")

        async def hook(node_id: str, progress: int) -> None:
            if progress == 50:
                executor.fail("forced")

        executor = NodeExecutor("n", store, timings=FAST, step_hook=hook)
        assert await executor.run() == JobStatus.FAILED

        progress = [e.progress for e in events if e.status == JobStatus.PROCESSING]
        assert max(progress) == 50
        assert events[-1].status == JobStatus.FAILED
        assert store.get("n").progress == 50

    @pytest.mark.asyncio
    async def test_node_failure_from_hook(self):
        store, _ = _recording_store("n")

        async def hook(node_id: str, progress: int) -> None:
            if progress >= 30:
                raise NodeFailure("bad batch")

        executor = NodeExecutor("n", store, timings=FAST, step_hook=hook)
        assert await executor.run() == JobStatus.FAILED
        assert executor.error == "bad batch"

    @pytest.mark.asyncio
    async def test_unexpected_hook_error_fails_node(self):
        store, _ = _recording_store("n")

        async def hook(node_id: str, progress: int) -> None:
            raise RuntimeError("disk full")

        executor = NodeExecutor("n", store, timings=FAST, step_hook=hook)
        assert await executor.run() == JobStatus.FAILED
        assert "RuntimeError" in executor.error
        assert not store.has_writer("n")

    @pytest.mark.asyncio
    async def test_timeout_fails_node(self):
        store, _ = _recording_store("n")
        slow = ExecutionTimings(queue_delay=1.0, init_delay=1.0, progress_step=10, progress_step_delay=1.0)
        executor = NodeExecutor("n", store, timings=slow, timeout=0.02)
        assert await executor.run() == JobStatus.FAILED
        assert "timed out" in executor.error
        assert store.get("n").status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancel_records_cancelled_and_propagates(self):
        store, _ = _recording_store("n")
        gate = asyncio.Event()

        async def hook(node_id: str, progress: int) -> None:
            await gate.wait()

        task = asyncio.create_task(NodeExecutor("n", store, timings=FAST, step_hook=hook).run())
        while store.get("n").status != JobStatus.PROCESSING:
            await asyncio.sleep(0.001)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert store.get("n").status == JobStatus.CANCELLED
        assert not store.has_writer("n")
