"""
Node Executor - Drives one node through its execution phases.
节点执行器 —— 驱动单个节点走完各执行阶段。

One NodeExecutor runs per launched node, as its own asyncio task:
每个被启动的节点都有一个 NodeExecutor，作为独立的 asyncio 任务运行：

    IDLE
     └─> QUEUED        (progress reset to 0, dwell: queue latency)
          └─> INITIALIZING   (dwell: startup latency)
               └─> PROCESSING     (progress 0, 10, ..., 100; one write + one dwell each)
                    └─> COMPLETED

    IDLE
     └─> QUEUED        （进度归零，停留：排队延迟）
          └─> INITIALIZING   （停留：启动延迟）
               └─> PROCESSING     （进度 0, 10, ..., 100；每次一写一停留）
                    └─> COMPLETED

Alternate terminals:
  - FAILED:    failure requested via fail(), per-executor timeout, or an
               error raised by the step hook
  - CANCELLED: the owning task was cancelled by the orchestrator
其他终态：
  - FAILED:    通过 fail() 请求失败、单节点超时、或 step hook 抛出异常
  - CANCELLED: 所属任务被编排器取消

The executor is the only writer of its node's StatusStore entry for the
whole lifetime of run(): it claims the writer first and releases it last.
在 run() 的整个生命周期内，执行器是其节点状态条目的唯一写者：
最先申请写权限，最后释放。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

import config
from dag.state_machine import NodeStateMachine, is_terminal
from dag.status_store import NodeWriter, StatusStore
from schema import JobStatus

logger = logging.getLogger(__name__)

# Optional per-increment hook: await hook(node_id, progress)
# 可选的进度步钩子：await hook(node_id, progress)
StepHook = Callable[[str, int], Awaitable[None]]


class NodeFailure(Exception):
    """
    Raised inside an executor to end the node in FAILED.
    在执行器内部抛出，使节点以 FAILED 结束。
    """
    pass


@dataclass(frozen=True)
class ExecutionTimings:
    """Dwell times for each phase (seconds)."""
    queue_delay: float = 0.8
    init_delay: float = 1.5
    progress_step: int = 10
    progress_step_delay: float = 0.2

    def __post_init__(self) -> None:
        if not 1 <= self.progress_step <= 100:
            raise ValueError(f"progress_step must be within 1..100, got {self.progress_step}")
        if min(self.queue_delay, self.init_delay, self.progress_step_delay) < 0:
            raise ValueError("dwell times must be non-negative")

    @classmethod
    def from_config(cls) -> ExecutionTimings:
        return cls(
            queue_delay=config.QUEUE_DELAY_SECONDS,
            init_delay=config.INIT_DELAY_SECONDS,
            progress_step=config.PROGRESS_STEP,
            progress_step_delay=config.PROGRESS_STEP_DELAY_SECONDS,
        )

    def scaled(self, factor: float) -> ExecutionTimings:
        """Same phases, every dwell multiplied by `factor`."""
        return replace(
            self,
            queue_delay=self.queue_delay * factor,
            init_delay=self.init_delay * factor,
            progress_step_delay=self.progress_step_delay * factor,
        )

    @property
    def longest_dwell(self) -> float:
        """Longest gap between two writes of a healthy executor."""
        return max(self.queue_delay, self.init_delay, self.progress_step_delay)

    def progress_points(self) -> list[int]:
        """0, step, 2*step, ... always ending exactly at 100."""
        points = list(range(0, 100, self.progress_step))
        points.append(100)
        return points


class NodeExecutor:
    """
    Advances one node through the state machine, writing every transition
    and every progress increment to the StatusStore.
    推进单个节点走完状态机，将每次转移和每次进度增量写入 StatusStore。
    """

    def __init__(
        self,
        node_id: str,
        store: StatusStore,
        timings: ExecutionTimings | None = None,
        timeout: float | None = None,
        step_hook: StepHook | None = None,
        state_machine: NodeStateMachine | None = None,
    ):
        self.node_id = node_id
        self._store = store
        self._timings = timings or ExecutionTimings.from_config()
        self._timeout = timeout if timeout and timeout > 0 else None
        self._step_hook = step_hook
        self._sm = state_machine or NodeStateMachine()
        self._status = JobStatus.IDLE
        self._fail_reason: str | None = None
        self.error: str | None = None  # 失败原因（终态为 FAILED/CANCELLED 时）

    @property
    def status(self) -> JobStatus:
        return self._status

    def fail(self, reason: str = "failure requested") -> None:
        """
        Request FAILED. Honoured at the next suspension point; no progress
        is written afterwards.
        请求失败。在下一个挂起点生效，此后不再写入任何进度。
        """
        if self._fail_reason is None:
            self._fail_reason = reason
            logger.info("[Executor] %s: failure requested (%s)", self.node_id, reason)

    # ------------------------------------------------------------------
    # Main entry
    # 主入口
    # ------------------------------------------------------------------

    async def run(self) -> JobStatus:
        """
        Execute the node and return its terminal status. Never raises for
        node-level errors; re-raises CancelledError after recording
        CANCELLED.

        执行节点并返回终态。节点级错误不会抛出；
        CancelledError 在记录 CANCELLED 之后重新抛出。
        """
        writer = self._store.claim(self.node_id)
        self._status = self._store.get(self.node_id).status
        try:
            if self._timeout is not None:
                await asyncio.wait_for(self._advance(writer), self._timeout)
            else:
                await self._advance(writer)
        except asyncio.TimeoutError:
            self._finish(writer, JobStatus.FAILED, f"timed out after {self._timeout:g}s")
        except asyncio.CancelledError:
            self._finish(writer, JobStatus.CANCELLED, "cancelled")
            raise
        except NodeFailure as exc:
            self._finish(writer, JobStatus.FAILED, str(exc))
        except Exception as exc:
            logger.exception("[Executor] %s: unexpected error", self.node_id)
            self._finish(writer, JobStatus.FAILED, f"{type(exc).__name__}: {exc}")
        finally:
            writer.release()
        return self._status

    async def _advance(self, writer: NodeWriter) -> None:
        t = self._timings

        self._check_failure()
        self._transition(writer, JobStatus.QUEUED, progress=0)
        await self._dwell(t.queue_delay)

        self._transition(writer, JobStatus.INITIALIZING)
        await self._dwell(t.init_delay)

        self._transition(writer, JobStatus.PROCESSING)
        for progress in t.progress_points():
            writer.write(JobStatus.PROCESSING, progress)
            if self._step_hook is not None:
                await self._step_hook(self.node_id, progress)
            await self._dwell(t.progress_step_delay)

        self._transition(writer, JobStatus.COMPLETED)
        logger.info("[Executor] %s completed", self.node_id)

    # ------------------------------------------------------------------
    # Helpers
    # 辅助方法
    # ------------------------------------------------------------------

    async def _dwell(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._check_failure()

    def _check_failure(self) -> None:
        if self._fail_reason is not None:
            raise NodeFailure(self._fail_reason)

    def _transition(self, writer: NodeWriter, new_status: JobStatus, progress: int | None = None) -> None:
        self._status = self._sm.transition(self.node_id, self._status, new_status)
        writer.write(new_status, progress)

    def _finish(self, writer: NodeWriter, status: JobStatus, reason: str) -> None:
        if is_terminal(self._status):
            return
        self.error = reason
        self._transition(writer, status)
        log = logger.info if status == JobStatus.CANCELLED else logger.warning
        log("[Executor] %s %s: %s", self.node_id, status.value, reason)
