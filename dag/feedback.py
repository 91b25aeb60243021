"""
Feedback Classifier - Marks edges that must not block readiness.
反馈边分类器 —— 标记不参与就绪判断的边。

A pipeline like prep -> ... -> retraining -> prep is intentionally cyclic.
The edge leaving the retraining step is a "feedback" edge: it expresses
"trigger another round" and would deadlock the scheduler if it were treated
as an ordinary dependency.

prep -> ... -> retraining -> prep 这样的流水线是有意成环的。
从 retraining 出发的边是「反馈边」：它表达的是「触发下一轮」，
若被当作普通依赖，调度器会死锁。

Classification happens once, when an edge is added to the graph. The result
is stored on the edge (``is_feedback``), so the readiness check never needs
to know about node roles.
分类只在边加入图时进行一次，结果存储在边上（``is_feedback``），
就绪判断因此无需了解节点角色。
"""

from __future__ import annotations

import logging
from typing import Iterable

import config
from schema import NodeType, PipelineEdge, PipelineNode

logger = logging.getLogger(__name__)


class FeedbackClassifier:
    """
    Decides whether a node is a feedback source and stamps edges accordingly.
    判断节点是否为反馈源，并据此标记边。
    """

    def __init__(self, feedback_types: Iterable[NodeType | str] | None = None):
        types = config.FEEDBACK_NODE_TYPES if feedback_types is None else feedback_types
        self._feedback_types = frozenset(NodeType(t) for t in types)

    @property
    def feedback_types(self) -> frozenset[NodeType]:
        return self._feedback_types

    def is_feedback_source(self, node: PipelineNode) -> bool:
        return node.node_type in self._feedback_types

    def classify(self, edge: PipelineEdge, nodes: dict[str, PipelineNode]) -> PipelineEdge:
        """
        Return `edge` with `is_feedback` resolved.
        返回已确定 `is_feedback` 的边。

        An edge that already carries ``is_feedback=True`` keeps it; otherwise
        the flag is derived from the source node's role.
        已显式标记为反馈的边保持不变；否则由源节点角色推导。
        """
        if edge.is_feedback:
            return edge
        source = nodes.get(edge.source)
        if source is None or not self.is_feedback_source(source):
            return edge
        logger.debug("[Feedback] %s -> %s marked as feedback (%s)",
                     edge.source, edge.target, source.node_type.value)
        return edge.model_copy(update={"is_feedback": True})
