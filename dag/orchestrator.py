"""
Orchestrator - Runs a PipelineGraph to a terminal outcome.
编排器 —— 将 PipelineGraph 运行到终局结果。

One run:
  1. Snapshot the graph, build a fresh StatusStore, reset every node to IDLE/0.
     This finishes before anything is launched.
  2. (optional) Pre-flight: a cycle in the non-feedback subgraph -> DEADLOCKED.
  3. Loop:
       a. snapshot statuses
       b. all COMPLETED                                  -> SUCCEEDED
       c. launch every eligible node as a tracked task (launched-set dedup)
       d. nothing running and nothing launchable:
            some node FAILED/CANCELLED                   -> FAILED
            otherwise                                    -> DEADLOCKED
       e. too many iterations without any change         -> DEADLOCKED
          wall-clock budget exhausted                    -> TIMED_OUT
       f. wait for the next StatusStore write (or the poll interval)

一次 Run：
  1. 快照图，新建 StatusStore，将所有节点重置为 IDLE/0。此步在任何启动之前完成。
  2. （可选）预检：非反馈子图存在环 -> DEADLOCKED。
  3. 循环：
       a. 快照状态
       b. 全部 COMPLETED                                 -> SUCCEEDED
       c. 将所有就绪节点作为受追踪任务启动（launched 集合去重）
       d. 没有运行中的节点且没有可启动的节点：
            存在 FAILED/CANCELLED 节点                    -> FAILED
            否则                                          -> DEADLOCKED
       e. 连续多次迭代没有任何变化                        -> DEADLOCKED
          超出墙钟预算                                    -> TIMED_OUT
       f. 等待下一次 StatusStore 写入（或轮询间隔）

The loop itself never blocks on node work and never raises for node-level
failures: they surface as statuses and in the RunResult.
循环本身从不阻塞在节点工作上，也不会因节点级失败而抛出：失败体现在状态和 RunResult 中。
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

import config
from dag.executor import ExecutionTimings, NodeExecutor, StepHook
from dag.graph import PipelineGraph
from dag.readiness import blocked_by_failure, eligible_nodes
from dag.state_machine import NodeStateMachine, is_terminal
from dag.status_store import StatusStore
from schema import (
    JobStatus,
    RunOutcome,
    RunResult,
    StatusEvent,
)

logger = logging.getLogger(__name__)


class RunInProgressError(RuntimeError):
    """
    Raised when a run (or single-node execution) is requested while another
    is active.
    已有运行进行中时再次请求运行会抛出此异常。
    """
    pass


class NodeBusyError(RuntimeError):
    """
    Raised when a currently executing node is edited or relaunched.
    对正在执行的节点进行修改或重复启动时抛出。
    """
    pass


def new_job_id() -> str:
    return f"JOB-{random.randint(0, 99999)}"


def default_job_name() -> str:
    return f"Job-{date.today().isoformat()}"


def _optional(value: float) -> float | None:
    return value if value > 0 else None


@dataclass
class OrchestratorSettings:
    """Loop cadence and safety bounds. Defaults come from config."""
    poll_interval: float = field(default_factory=lambda: config.POLL_INTERVAL_SECONDS)
    max_iterations: int = field(default_factory=lambda: config.MAX_LOOP_ITERATIONS)
    run_timeout: float | None = field(default_factory=lambda: _optional(config.RUN_TIMEOUT_SECONDS))
    node_timeout: float | None = field(default_factory=lambda: _optional(config.NODE_TIMEOUT_SECONDS))
    check_cycles: bool = field(default_factory=lambda: config.CHECK_CYCLES_ON_START)
    timings: ExecutionTimings = field(default_factory=ExecutionTimings.from_config)


@dataclass
class OrchestrationContext:
    """
    Everything one run owns: the immutable graph snapshot, its StatusStore,
    and a handle for every launched executor.
    一次 Run 拥有的全部内容：不可变图快照、StatusStore、以及每个已启动执行器的句柄。
    """
    job_id: str
    job_name: str
    graph: PipelineGraph
    store: StatusStore
    started_at: float = field(default_factory=time.time)
    launched: set[str] = field(default_factory=set)
    tasks: dict[str, asyncio.Task] = field(default_factory=dict)
    executors: dict[str, NodeExecutor] = field(default_factory=dict)
    iteration: int = 0
    stalled: int = 0  # 连续无变化的迭代次数
    last_change: float = 0.0  # 最近一次状态变化的事件循环时间


class Orchestrator:
    """
    The orchestration loop plus the narrow interface used by the editor,
    the config panel and the job-submission collaborators.
    编排循环，以及供编辑器、配置面板和作业提交方使用的窄接口。
    """

    def __init__(
        self,
        graph: PipelineGraph,
        settings: OrchestratorSettings | None = None,
        on_event: Callable[[str, Any], None] | None = None,
        step_hook: StepHook | None = None,
    ):
        self._graph = graph
        self._settings = settings or OrchestratorSettings()
        self._on_event = on_event or (lambda *_: None)  # 事件回调（用于 UI 实时更新）
        self._step_hook = step_hook
        self._sm = NodeStateMachine()
        self._store = self._new_store(graph.node_ids())
        self._ctx: OrchestrationContext | None = None
        self._running = False
        self._cancel_requested = False
        self._single_runs: dict[str, NodeExecutor] = {}  # run_node() 启动的单节点执行

    # ------------------------------------------------------------------
    # Observation
    # 观察接口
    # ------------------------------------------------------------------

    @property
    def graph(self) -> PipelineGraph:
        return self._graph

    @property
    def store(self) -> StatusStore:
        return self._store

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    @property
    def context(self) -> OrchestrationContext | None:
        return self._ctx

    def is_running(self) -> bool:
        return self._running

    def status(self) -> dict[str, dict[str, object]]:
        """Current StatusStore contents: {node_id: {status, progress}}."""
        return self._store.as_dict()

    # ------------------------------------------------------------------
    # Run trigger
    # 运行触发
    # ------------------------------------------------------------------

    async def start_run(self, job_name: str | None = None, job_id: str | None = None) -> RunResult:
        """
        Reset every node, then drive the graph until a terminal outcome.
        重置所有节点，然后驱动整张图直到得出终局结果。
        """
        if self._running:
            raise RunInProgressError("A run is already in progress")
        if self._single_runs:
            raise RunInProgressError(
                f"Single-node executions still active: {sorted(self._single_runs)}"
            )

        self._running = True
        self._cancel_requested = False
        try:
            ctx = self._prepare(job_name or default_job_name(), job_id or new_job_id())
            try:
                return await self._run_loop(ctx)
            except (asyncio.CancelledError, Exception):
                # The loop itself was cancelled or crashed: do not leave executors behind
                # 循环本身被取消或崩溃：不能遗留执行器
                await self._cancel_all(ctx)
                raise
        finally:
            self._running = False
            self._ctx = None

    def _prepare(self, job_name: str, job_id: str) -> OrchestrationContext:
        snapshot = self._graph.snapshot()
        store = self._new_store(snapshot.node_ids())
        # Reset-before-launch: all entries IDLE/0 before the first iteration
        # 启动前重置：第一次迭代之前所有条目为 IDLE/0
        store.reset()
        self._store = store
        ctx = OrchestrationContext(job_id=job_id, job_name=job_name, graph=snapshot, store=store)
        self._ctx = ctx
        return ctx

    async def _run_loop(self, ctx: OrchestrationContext) -> RunResult:
        s = self._settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + s.run_timeout if s.run_timeout else None
        ctx.last_change = loop.time()

        logger.info("[Orchestrator] %s (%s) started: %s", ctx.job_id, ctx.job_name, ctx.graph.summary())
        self._emit("run_started", {
            "job_id": ctx.job_id,
            "job_name": ctx.job_name,
            "nodes": ctx.graph.node_ids(),
        })

        if s.check_cycles:
            cycle = ctx.graph.find_cycle()
            if cycle:
                return self._finish(
                    ctx, RunOutcome.DEADLOCKED,
                    f"cycle without a feedback edge: {' -> '.join(cycle)}",
                )

        while True:
            ctx.iteration += 1

            if self._cancel_requested:
                await self._cancel_all(ctx)
                return self._finish(ctx, RunOutcome.CANCELLED, "run cancelled")

            statuses = ctx.store.statuses()
            if all(st == JobStatus.COMPLETED for st in statuses.values()):
                return self._finish(ctx, RunOutcome.SUCCEEDED)

            if ctx.stalled >= s.max_iterations:
                await self._cancel_all(ctx)
                return self._finish(
                    ctx, RunOutcome.DEADLOCKED,
                    f"no progress in {ctx.stalled} consecutive iterations",
                )
            if deadline is not None and loop.time() >= deadline:
                await self._cancel_all(ctx)
                return self._finish(
                    ctx, RunOutcome.TIMED_OUT,
                    f"run exceeded {s.run_timeout:g}s",
                )

            ready = eligible_nodes(ctx.graph, statuses, ctx.launched)
            for node_id in ready:
                self._launch(ctx, node_id)

            if not ready and not ctx.launched:
                # Quiescent: nothing running, nothing can start
                # 静止：没有运行中的节点，也没有可启动的节点
                statuses = ctx.store.statuses()
                if any(st in (JobStatus.FAILED, JobStatus.CANCELLED) for st in statuses.values()):
                    return self._finish(ctx, RunOutcome.FAILED, "blocked by failed nodes")
                return self._finish(ctx, RunOutcome.DEADLOCKED, "no node can become ready")

            timeout = s.poll_interval
            if deadline is not None:
                timeout = max(0.0, min(timeout, deadline - loop.time()))
            changed = await ctx.store.wait_for_change(timeout)
            now = loop.time()
            if changed or ready:
                ctx.stalled = 0
                ctx.last_change = now
            elif now - ctx.last_change > s.timings.longest_dwell:
                # Silence shorter than one dwell is a healthy executor, not a stall
                # 短于一次停留的静默属于正常执行，不算停滞
                ctx.stalled += 1

    # ------------------------------------------------------------------
    # Executor management
    # 执行器管理
    # ------------------------------------------------------------------

    def _launch(self, ctx: OrchestrationContext, node_id: str) -> None:
        s = self._settings
        executor = NodeExecutor(
            node_id,
            ctx.store,
            timings=s.timings,
            timeout=s.node_timeout,
            step_hook=self._step_hook,
            state_machine=self._sm,
        )
        ctx.launched.add(node_id)
        ctx.executors[node_id] = executor
        task = asyncio.create_task(executor.run(), name=f"node:{node_id}")
        ctx.tasks[node_id] = task
        task.add_done_callback(lambda t, nid=node_id: self._on_executor_done(ctx, nid, t))

        logger.info("[Orchestrator] Launching %s (iteration %d)", node_id, ctx.iteration)
        self._emit("node_launched", {"node_id": node_id, "iteration": ctx.iteration})

    def _on_executor_done(self, ctx: OrchestrationContext, node_id: str, task: asyncio.Task) -> None:
        ctx.launched.discard(node_id)
        ctx.tasks.pop(node_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("[Orchestrator] Executor for %s crashed: %r", node_id, task.exception())
        ctx.store.notify()

    async def _cancel_all(self, ctx: OrchestrationContext) -> None:
        """
        Cancel every active executor and wait for them to record CANCELLED.
        取消所有活跃执行器，并等待它们记录 CANCELLED。
        """
        tasks = list(ctx.tasks.values())
        if not tasks:
            return
        logger.info("[Orchestrator] Cancelling %d active executor(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self) -> bool:
        """
        Ask the running loop to stop. Active executors end CANCELLED at
        their next suspension point.
        请求正在运行的循环停止。活跃执行器在下一个挂起点以 CANCELLED 结束。
        """
        if not self._running or self._ctx is None:
            return False
        self._cancel_requested = True
        self._ctx.store.notify()
        return True

    def fail_node(self, node_id: str, reason: str = "forced failure") -> bool:
        """
        Force an executing node to FAILED. Returns False if the node is not
        currently executing.
        强制正在执行的节点失败。节点未在执行时返回 False。
        """
        executor = None
        if self._ctx is not None and node_id in self._ctx.launched:
            executor = self._ctx.executors.get(node_id)
        if executor is None:
            executor = self._single_runs.get(node_id)
        if executor is None:
            logger.warning("[Orchestrator] Cannot fail '%s': not executing", node_id)
            return False
        executor.fail(reason)
        return True

    # ------------------------------------------------------------------
    # Editing & single-node execution
    # 编辑与单节点执行
    # ------------------------------------------------------------------

    def update_node(self, node_id: str, updates: dict[str, Any]) -> None:
        """
        Partial node update from the config panel. Allowed between runs or
        on nodes that are not executing; edits made during a run apply to the
        next run only.
        来自配置面板的部分更新。允许在运行之间或对未执行的节点进行；
        运行期间的修改只对下一次 Run 生效。
        """
        if self._is_executing(node_id):
            raise NodeBusyError(f"Node '{node_id}' is executing")
        self._graph.update_node(node_id, updates)

    def _is_executing(self, node_id: str) -> bool:
        if node_id in self._single_runs:
            return True
        return self._ctx is not None and node_id in self._ctx.launched

    async def run_node(self, node_id: str) -> JobStatus:
        """
        Execute one node on its own, outside a full run.
        在完整 Run 之外单独执行一个节点。
        """
        if self._running:
            raise RunInProgressError("Cannot run a single node while a run is active")
        if node_id in self._single_runs:
            raise NodeBusyError(f"Node '{node_id}' is already executing")
        self._graph.get_node(node_id)

        self._store.reset([node_id])
        executor = NodeExecutor(
            node_id,
            self._store,
            timings=self._settings.timings,
            timeout=self._settings.node_timeout,
            step_hook=self._step_hook,
            state_machine=self._sm,
        )
        self._single_runs[node_id] = executor
        try:
            return await executor.run()
        finally:
            del self._single_runs[node_id]

    # ------------------------------------------------------------------
    # Results & events
    # 结果与事件
    # ------------------------------------------------------------------

    def _finish(self, ctx: OrchestrationContext, outcome: RunOutcome, detail: str = "") -> RunResult:
        statuses = ctx.store.statuses()
        failed = [nid for nid, st in statuses.items() if st in (JobStatus.FAILED, JobStatus.CANCELLED)]
        if outcome == RunOutcome.SUCCEEDED:
            blocked = []
        elif outcome == RunOutcome.FAILED:
            blocked = sorted(blocked_by_failure(ctx.graph, statuses))
        else:
            blocked = [nid for nid, st in statuses.items() if not is_terminal(st)]

        result = RunResult(
            job_id=ctx.job_id,
            job_name=ctx.job_name,
            outcome=outcome,
            iterations=ctx.iteration,
            started_at=ctx.started_at,
            finished_at=time.time(),
            statuses=ctx.store.snapshot(),
            failed_nodes=failed,
            blocked_nodes=blocked,
            detail=detail,
        )
        log = logger.info if outcome == RunOutcome.SUCCEEDED else logger.warning
        log("[Orchestrator] %s finished: %s after %d iteration(s)%s. %s",
            ctx.job_id, outcome.value, ctx.iteration,
            f" ({detail})" if detail else "", ctx.graph.summary(statuses))
        self._emit("run_finished", {"result": result})
        return result

    def _emit(self, event: str, data: Any = None) -> None:
        """
        Emit an event to the UI callback.
        向 UI 回调函数发送事件，UI 异常不影响主流程。
        """
        try:
            self._on_event(event, data)
        except Exception:
            logger.exception("[Orchestrator] on_event failed for %s", event)

    def _new_store(self, node_ids: list[str]) -> StatusStore:
        store = StatusStore(node_ids)
        store.subscribe(self._on_status_event)
        return store

    def _on_status_event(self, event: StatusEvent) -> None:
        """
        Forward StatusStore writes as UI events.
        将 StatusStore 写入转发为 UI 事件。
        """
        if event.previous != event.status:
            self._emit("node_transition", {
                "node_id": event.node_id,
                "from": event.previous.value if event.previous else None,
                "to": event.status.value,
                "progress": event.progress,
            })
        else:
            self._emit("node_progress", {
                "node_id": event.node_id,
                "status": event.status.value,
                "progress": event.progress,
            })
