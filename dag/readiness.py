"""
Readiness Resolver - Decides which idle nodes may be launched.
就绪解析器 —— 判断哪些空闲节点可以被启动。

A node is launch-eligible when:
  1. every incoming non-feedback edge comes from a COMPLETED source,
  2. its own status is IDLE,
  3. it is not already in the orchestrator's "launched" set.

节点可被启动的条件：
  1. 所有非反馈入边的源节点均为 COMPLETED，
  2. 自身状态为 IDLE，
  3. 不在编排器的「已启动」集合中。

All functions are pure: they read a graph snapshot and a status snapshot
and never mutate either.
所有函数都是纯函数：只读取图快照和状态快照，从不修改。
"""

from __future__ import annotations

from typing import AbstractSet, Mapping

from dag.graph import PipelineGraph
from schema import JobStatus, PipelineEdge

_FAILURE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})


def unfinished_dependencies(
    node_id: str,
    graph: PipelineGraph,
    statuses: Mapping[str, JobStatus],
) -> set[PipelineEdge]:
    """
    Return the incoming edges that still block `node_id`.
    返回仍在阻塞 `node_id` 的入边集合。

    Feedback edges are discarded regardless of their source's status.
    反馈边无论源节点状态如何都会被忽略。
    """
    return {
        e for e in graph.incoming_edges(node_id)
        if not e.is_feedback and statuses.get(e.source) != JobStatus.COMPLETED
    }


def is_launch_eligible(
    node_id: str,
    graph: PipelineGraph,
    statuses: Mapping[str, JobStatus],
    launched: AbstractSet[str] = frozenset(),
) -> bool:
    if statuses.get(node_id) != JobStatus.IDLE or node_id in launched:
        return False
    return not unfinished_dependencies(node_id, graph, statuses)


def eligible_nodes(
    graph: PipelineGraph,
    statuses: Mapping[str, JobStatus],
    launched: AbstractSet[str] = frozenset(),
) -> list[str]:
    """Eligible node ids, in graph order."""
    return [
        nid for nid in graph.node_ids()
        if is_launch_eligible(nid, graph, statuses, launched)
    ]


def blocked_by_failure(
    graph: PipelineGraph,
    statuses: Mapping[str, JobStatus],
) -> set[str]:
    """
    Nodes that can never start because a non-feedback ancestor FAILED or
    was CANCELLED.
    因非反馈祖先节点 FAILED/CANCELLED 而永远无法启动的节点。
    """
    blocked: set[str] = set()
    for nid, status in statuses.items():
        if status in _FAILURE_STATUSES and nid in graph:
            blocked.update(graph.downstream(nid))
    return {nid for nid in blocked if statuses.get(nid) == JobStatus.IDLE}
