"""
Node State Machine - Validates and enforces node lifecycle transitions.
节点状态机 —— 校验并强制执行节点生命周期的合法状态转移。

The transition table is the single source of truth for what state changes
are legal. Any invalid transition raises InvalidTransitionError, so a node
can only move forward: no skipping, no going back within a run.
转移表是合法状态变化的唯一权威来源。
任何非法转移都会抛出 InvalidTransitionError，节点只能向前推进：
一次 Run 内既不能跳步，也不能回退。

Transition graph:
转移图：
    IDLE ──> QUEUED ──> INITIALIZING ──> PROCESSING ──> COMPLETED   (happy path / 正常路径)
    Any non-terminal ───────────────────────────────> FAILED       (error / timeout / forced)
    Any non-terminal ───────────────────────────────> CANCELLED    (orchestrator shutdown / 编排器取消)

Resetting to IDLE is not a transition: only the StatusStore's reset does it,
and only while no executor holds a writer.
重置为 IDLE 不属于状态转移：只能由 StatusStore.reset 完成，且仅在没有执行器持有写权限时。
"""

from __future__ import annotations

import logging

from schema import TERMINAL_STATUSES, JobStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """
    pass


# Full transition table.
# 完整的状态转移表。
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.IDLE:         {JobStatus.QUEUED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.QUEUED:       {JobStatus.INITIALIZING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.INITIALIZING: {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.PROCESSING:   {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    # Terminal states: no further transitions
    # 终态：不允许进一步转移
    JobStatus.COMPLETED:    set(),
    JobStatus.FAILED:       set(),
    JobStatus.CANCELLED:    set(),
}


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


class NodeStateMachine:
    """
    Validates node state transitions.
    校验节点状态转移。

    The machine does not own node state: the executor passes the current
    status in and writes the returned status to the StatusStore itself.
    Observers follow the StatusStore, not the machine.
    状态机不持有节点状态：执行器传入当前状态，并自行把返回的新状态写入 StatusStore。
    观察者订阅 StatusStore，而不是状态机。
    """

    @staticmethod
    def can_transition(current: JobStatus, new_status: JobStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(current, set())

    def transition(self, node_id: str, current: JobStatus, new_status: JobStatus) -> JobStatus:
        """
        Validate a transition and return the new status.
        Raises InvalidTransitionError if illegal.

        校验状态转移并返回新状态。若转移非法则抛出 InvalidTransitionError。
        """
        if not self.can_transition(current, new_status):
            raise InvalidTransitionError(
                f"Node '{node_id}': cannot transition from {current.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))}"
            )

        logger.debug("[SM] %s: %s -> %s", node_id, current.value, new_status.value)
        return new_status
