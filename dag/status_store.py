"""
Status Store - Shared table of per-node status and progress.
状态表 —— 各节点状态与进度的共享表。

Write discipline (single writer per key):
  - the orchestrator resets every entry at run start, only while no writer
    is claimed;
  - afterwards each entry is written exclusively through the NodeWriter
    claimed by that node's executor.

写入纪律（每个 key 只有一个写者）：
  - 编排器在 Run 开始时重置所有条目，且仅在没有写者被占用时；
  - 此后每个条目只能通过该节点执行器占用的 NodeWriter 写入。

Because ownership is enforced by construction (claim/release), no per-entry
locking is needed. Readers get copies via snapshot()/as_dict().
由于所有权在构造上得到保证（claim/release），无需逐条目加锁。
读者通过 snapshot()/as_dict() 获取副本。

Every write publishes a StatusEvent to subscribers and wakes anyone awaiting
wait_for_change(): this is how the orchestrator reacts to progress without
waiting out a full polling interval.
每次写入都会向订阅者发布 StatusEvent，并唤醒 wait_for_change() 的等待者：
编排器借此对进度做出响应，而不必等满一个轮询间隔。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from schema import JobStatus, NodeState, StatusEvent

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusEvent], None]


class StoreError(RuntimeError):
    pass


class WriterConflictError(StoreError):
    """
    Raised when a second writer is claimed for a node that already has one.
    同一节点已有写者时再次申请写权限会抛出此异常。
    """
    pass


class StoreLockedError(StoreError):
    """
    Raised when a reset is attempted while executors still hold writers.
    仍有执行器持有写权限时尝试重置会抛出此异常。
    """
    pass


class NodeWriter:
    """
    Exclusive write handle for one node's entry.
    单个节点条目的独占写句柄。
    """

    def __init__(self, store: StatusStore, node_id: str):
        self._store = store
        self.node_id = node_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def write(self, status: JobStatus, progress: int | None = None) -> None:
        if self._released:
            raise StoreError(f"Writer for '{self.node_id}' has been released")
        self._store._apply(self.node_id, status, progress)

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._store._release(self.node_id, self)

    def __enter__(self) -> NodeWriter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class StatusStore:
    """
    Mapping node_id -> NodeState with single-writer ownership.
    node_id -> NodeState 的映射，带单写者所有权控制。
    """

    def __init__(self, node_ids: Iterable[str] = ()):
        self._entries: dict[str, NodeState] = {nid: NodeState() for nid in node_ids}
        self._writers: dict[str, NodeWriter] = {}
        self._listeners: list[StatusListener] = []
        self._changed = asyncio.Event()

    # ------------------------------------------------------------------
    # Reads
    # 读取
    # ------------------------------------------------------------------

    def get(self, node_id: str) -> NodeState:
        return self._entries[node_id].model_copy()

    def snapshot(self) -> dict[str, NodeState]:
        return {nid: s.model_copy() for nid, s in self._entries.items()}

    def statuses(self) -> dict[str, JobStatus]:
        return {nid: s.status for nid, s in self._entries.items()}

    def as_dict(self) -> dict[str, dict[str, object]]:
        """
        Observer view: ``{node_id: {"status": ..., "progress": ...}}``.
        观察者视图。
        """
        return {
            nid: {"status": s.status.value, "progress": s.progress}
            for nid, s in self._entries.items()
        }

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries

    # ------------------------------------------------------------------
    # Ownership
    # 所有权
    # ------------------------------------------------------------------

    def claim(self, node_id: str) -> NodeWriter:
        if node_id not in self._entries:
            raise KeyError(node_id)
        if node_id in self._writers:
            raise WriterConflictError(f"Node '{node_id}' already has an active writer")
        writer = NodeWriter(self, node_id)
        self._writers[node_id] = writer
        return writer

    def has_writer(self, node_id: str) -> bool:
        return node_id in self._writers

    @property
    def active_writers(self) -> list[str]:
        return list(self._writers)

    def _release(self, node_id: str, writer: NodeWriter) -> None:
        if self._writers.get(node_id) is writer:
            del self._writers[node_id]

    # ------------------------------------------------------------------
    # Writes
    # 写入
    # ------------------------------------------------------------------

    def reset(self, node_ids: Iterable[str] | None = None) -> None:
        """
        Reset entries to IDLE / 0, adding any ids not yet tracked.
        将条目重置为 IDLE / 0，并补齐尚未跟踪的节点。

        Without `node_ids` every tracked entry is reset. Forbidden while any
        of the affected entries has an active writer.
        不传 `node_ids` 时重置全部条目。受影响条目有活跃写者时禁止重置。
        """
        ids = list(self._entries) if node_ids is None else list(node_ids)
        busy = sorted(nid for nid in ids if nid in self._writers)
        if busy:
            raise StoreLockedError(f"Cannot reset while executors are active: {busy}")
        for nid in ids:
            previous = self._entries[nid].status if nid in self._entries else None
            self._entries[nid] = NodeState()
            self._publish(StatusEvent(node_id=nid, status=JobStatus.IDLE, progress=0, previous=previous))

    def _apply(self, node_id: str, status: JobStatus, progress: int | None) -> None:
        entry = self._entries[node_id]
        previous = entry.status
        new_progress = entry.progress if progress is None else progress
        self._entries[node_id] = NodeState(status=status, progress=new_progress)
        self._publish(StatusEvent(node_id=node_id, status=status, progress=new_progress, previous=previous))

    # ------------------------------------------------------------------
    # Observation
    # 观察
    # ------------------------------------------------------------------

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, event: StatusEvent) -> None:
        self._changed.set()
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # Observer errors must not break the writer
                # 观察者异常不能影响写者
                logger.exception("[StatusStore] Listener failed on %s", event.node_id)

    def notify(self) -> None:
        """Wake waiters without writing an entry."""
        self._changed.set()

    async def wait_for_change(self, timeout: float) -> bool:
        """
        Wait until any entry is written, or `timeout` seconds pass.
        Returns True if woken by a change.

        等待任一条目被写入，或超时。被变更唤醒时返回 True。
        """
        try:
            await asyncio.wait_for(self._changed.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            self._changed.clear()
        return True
