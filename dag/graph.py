"""
PipelineGraph - Directed graph of job nodes for the orchestration engine.
PipelineGraph —— 编排引擎使用的作业节点有向图。

The PipelineGraph holds:
  - nodes: ordered dict of PipelineNode (insertion order = display order)
  - edges: ordered list of PipelineEdge, each stamped with `is_feedback`

PipelineGraph 包含：
  - nodes: 有序的 PipelineNode 字典（插入顺序即展示顺序）
  - edges: 有序的 PipelineEdge 列表，每条边都带有 `is_feedback` 标记

The full graph may contain cycles; only the subgraph without feedback edges
must be acyclic. `find_cycle()` checks exactly that subgraph.
完整图可以有环；只有去掉反馈边后的子图必须无环。`find_cycle()` 正是检查该子图。

Key operations:
  - incoming_edges() / outgoing_edges(): edge queries used by readiness
  - downstream(): transitive dependents (failure propagation)
  - find_cycle() / topological_order(): validation before a run
  - snapshot(): read-only copy handed to a run

核心操作：
  - incoming_edges() / outgoing_edges(): 就绪判断使用的边查询
  - downstream():                       传递下游（失败传播）
  - find_cycle() / topological_order(): 运行前校验
  - snapshot():                         交给一次 Run 的只读副本
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from dag.feedback import FeedbackClassifier
from schema import JobStatus, PipelineEdge, PipelineNode

logger = logging.getLogger(__name__)


class GraphError(ValueError):
    """
    Raised when an edit would leave the graph inconsistent.
    当编辑操作会使图不一致时抛出。
    """
    pass


class PipelineGraph:
    """
    Nodes plus directed edges. Read-only during a run; editing between runs
    is the editor's responsibility and is not guarded here.
    节点加有向边。运行期间只读；运行之间的编辑由编辑器负责，此处不加保护。
    """

    def __init__(
        self,
        nodes: list[PipelineNode] | None = None,
        edges: list[PipelineEdge] | None = None,
        classifier: FeedbackClassifier | None = None,
    ):
        self._classifier = classifier or FeedbackClassifier()
        self._nodes: dict[str, PipelineNode] = {}
        self._edges: list[PipelineEdge] = []
        # Edges supplied with is_feedback=True keep it across node-type edits.
        # 显式声明为反馈的边，在节点类型修改后仍保持反馈标记。
        self._explicit_feedback: set[str] = set()

        for node in nodes or []:
            self.add_node(node)
        for edge in edges or []:
            self.add_edge(edge)

    @property
    def classifier(self) -> FeedbackClassifier:
        return self._classifier

    # ------------------------------------------------------------------
    # Queries
    # 查询
    # ------------------------------------------------------------------

    def all_nodes(self) -> list[PipelineNode]:
        return list(self._nodes.values())

    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> PipelineNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise GraphError(f"Unknown node '{node_id}'") from None

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def edges(self) -> list[PipelineEdge]:
        return list(self._edges)

    def incoming_edges(self, node_id: str) -> list[PipelineEdge]:
        return [e for e in self._edges if e.target == node_id]

    def outgoing_edges(self, node_id: str) -> list[PipelineEdge]:
        return [e for e in self._edges if e.source == node_id]

    def dependency_ids(self, node_id: str) -> list[str]:
        """
        Return IDs of the non-feedback predecessors of `node_id`.
        返回 `node_id` 的所有非反馈前置节点 ID。
        """
        return [e.source for e in self.incoming_edges(node_id) if not e.is_feedback]

    def downstream(self, node_id: str) -> list[str]:
        """
        Return every node transitively reachable from `node_id` through
        non-feedback edges (BFS order).
        通过 BFS 遍历非反馈边，返回 `node_id` 的所有传递下游节点。
        """
        visited: set[str] = set()
        order: list[str] = []
        queue: deque[str] = deque(
            e.target for e in self.outgoing_edges(node_id) if not e.is_feedback
        )
        while queue:
            nid = queue.popleft()
            if nid in visited or nid == node_id:
                continue
            visited.add(nid)
            order.append(nid)
            for e in self.outgoing_edges(nid):
                if not e.is_feedback:
                    queue.append(e.target)
        return order

    def upstream_output_paths(self, node_id: str) -> list[str]:
        """
        Output paths of every predecessor, in edge order.
        按边的顺序返回所有前置节点的输出路径。

        No merge policy is applied for multi-parent nodes.
        多父节点不做任何合并。
        """
        paths = []
        for e in self.incoming_edges(node_id):
            source = self._nodes.get(e.source)
            if source is not None and source.config.output_path:
                paths.append(source.config.output_path)
        return paths

    def upstream_output_path(self, node_id: str) -> str | None:
        """
        The single upstream output path, or None when there is none or when
        predecessors disagree.
        唯一的上游输出路径；没有或前置节点不一致时返回 None。
        """
        distinct = list(dict.fromkeys(self.upstream_output_paths(node_id)))
        if len(distinct) > 1:
            logger.warning("[Graph] Node %s has %d distinct upstream outputs; no merge policy defined",
                           node_id, len(distinct))
            return None
        return distinct[0] if distinct else None

    # ------------------------------------------------------------------
    # Editing (between runs)
    # 编辑（运行之间）
    # ------------------------------------------------------------------

    def add_node(self, node: PipelineNode) -> None:
        if node.id in self._nodes:
            raise GraphError(f"Node '{node.id}' already exists")
        self._nodes[node.id] = node
        logger.debug("[Graph] Node added: %s (%s)", node.id, node.node_type.value)

    def remove_node(self, node_id: str) -> PipelineNode:
        """
        Remove a node and every edge attached to it.
        移除节点及其所有关联边。
        """
        node = self.get_node(node_id)
        del self._nodes[node_id]
        dropped = [e.id for e in self._edges if node_id in (e.source, e.target)]
        self._edges = [e for e in self._edges if e.id not in dropped]
        self._explicit_feedback.difference_update(dropped)
        logger.debug("[Graph] Node removed: %s (%d edges dropped)", node_id, len(dropped))
        return node

    def add_edge(self, edge: PipelineEdge) -> PipelineEdge:
        """
        Add an edge, classifying it as feedback or not.
        添加边，同时判定其是否为反馈边。

        Both endpoints must exist; duplicate ids or duplicate
        (source, target) pairs are rejected.
        两端节点必须存在；重复 id 或重复 (source, target) 会被拒绝。
        """
        if edge.source not in self._nodes:
            raise GraphError(f"Edge '{edge.id}': source '{edge.source}' not found")
        if edge.target not in self._nodes:
            raise GraphError(f"Edge '{edge.id}': target '{edge.target}' not found")
        for existing in self._edges:
            if existing.id == edge.id:
                raise GraphError(f"Edge '{edge.id}' already exists")
            if (existing.source, existing.target) == (edge.source, edge.target):
                raise GraphError(f"Edge {edge.source} -> {edge.target} already exists")

        if edge.is_feedback:
            self._explicit_feedback.add(edge.id)
        classified = self._classifier.classify(edge, self._nodes)
        self._edges.append(classified)
        logger.debug("[Graph] Edge added: %s -> %s%s", classified.source, classified.target,
                     " (feedback)" if classified.is_feedback else "")
        return classified

    def remove_edge(self, edge_id: str) -> PipelineEdge:
        for i, e in enumerate(self._edges):
            if e.id == edge_id:
                self._explicit_feedback.discard(edge_id)
                return self._edges.pop(i)
        raise GraphError(f"Unknown edge '{edge_id}'")

    def update_node(self, node_id: str, updates: dict[str, Any]) -> PipelineNode:
        """
        Apply a partial update. Nested `config` dicts are merged, not replaced.
        应用部分更新。嵌套的 `config` 字典会合并而不是整体替换。

        Changing a node's type re-derives the feedback flag of its outgoing
        edges.
        修改节点类型会重新推导其出边的反馈标记。
        """
        node = self.get_node(node_id)
        if updates.get("id", node_id) != node_id:
            raise GraphError(f"Node '{node_id}': id cannot be changed by update_node")
        data = node.model_dump(by_alias=False)
        for key, value in updates.items():
            if key == "config" and isinstance(value, dict):
                data["config"] = {**data["config"], **NodeConfigUpdate.normalize(value)}
            else:
                data[NodeConfigUpdate.field_name(key)] = value
        updated = PipelineNode.model_validate(data)
        self._nodes[node_id] = updated

        if updated.node_type != node.node_type:
            self._reclassify_outgoing(node_id)
        return updated

    def _reclassify_outgoing(self, node_id: str) -> None:
        for i, e in enumerate(self._edges):
            if e.source != node_id or e.id in self._explicit_feedback:
                continue
            base = e.model_copy(update={"is_feedback": False})
            self._edges[i] = self._classifier.classify(base, self._nodes)

    # ------------------------------------------------------------------
    # Graph algorithms
    # 图算法
    # ------------------------------------------------------------------

    def topological_order(self) -> list[str]:
        """
        Kahn's algorithm over non-feedback edges. Nodes on a cycle are
        missing from the result.
        基于非反馈边的 Kahn 算法。位于环上的节点不会出现在结果中。
        """
        in_degree: dict[str, int] = {nid: 0 for nid in self._nodes}
        for e in self._edges:
            if not e.is_feedback:
                in_degree[e.target] += 1

        queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
        result: list[str] = []
        while queue:
            nid = queue.popleft()
            result.append(nid)
            for e in self.outgoing_edges(nid):
                if e.is_feedback:
                    continue
                in_degree[e.target] -= 1
                if in_degree[e.target] == 0:
                    queue.append(e.target)

        if len(result) != len(self._nodes):
            logger.warning("[Graph] Cycle detected! Topological sort incomplete.")
        return result

    def find_cycle(self) -> list[str] | None:
        """
        Return one cycle of the non-feedback subgraph as a node path
        (first node repeated at the end), or None when it is acyclic.
        返回非反馈子图中的一个环（首节点在末尾重复），无环时返回 None。
        """
        white, grey, black = 0, 1, 2
        color = {nid: white for nid in self._nodes}
        parent: dict[str, str] = {}

        for root in self._nodes:
            if color[root] != white:
                continue
            # Iterative DFS: stack of (node, iterator over its successors)
            stack = [(root, iter(self._successors(root)))]
            color[root] = grey
            while stack:
                nid, children = stack[-1]
                child = next(children, None)
                if child is None:
                    color[nid] = black
                    stack.pop()
                    continue
                if color[child] == grey:
                    cycle = [child]
                    cur = nid
                    while cur != child:
                        cycle.append(cur)
                        cur = parent[cur]
                    cycle.append(child)
                    cycle.reverse()
                    return cycle
                if color[child] == white:
                    parent[child] = nid
                    color[child] = grey
                    stack.append((child, iter(self._successors(child))))
        return None

    def _successors(self, node_id: str) -> list[str]:
        return [e.target for e in self.outgoing_edges(node_id) if not e.is_feedback]

    # ------------------------------------------------------------------
    # Snapshots & serialization
    # 快照与序列化
    # ------------------------------------------------------------------

    def snapshot(self) -> PipelineGraph:
        """
        Deep copy used as the immutable graph of one run.
        深拷贝，作为一次 Run 使用的不可变图。
        """
        clone = PipelineGraph(classifier=self._classifier)
        clone._nodes = {nid: n.model_copy(deep=True) for nid, n in self._nodes.items()}
        clone._edges = list(self._edges)  # edges are frozen
        clone._explicit_feedback = set(self._explicit_feedback)
        return clone

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize to the editor payload shape ``{nodes: [...], edges: [...]}``.
        序列化为编辑器负载格式。
        """
        return {
            "nodes": [n.model_dump(by_alias=True, mode="json") for n in self._nodes.values()],
            "edges": [e.model_dump(by_alias=True, mode="json") for e in self._edges],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        classifier: FeedbackClassifier | None = None,
    ) -> PipelineGraph:
        """
        Build a graph from the editor payload. Edge ``isFeedback`` flags are
        honoured when present, otherwise derived.
        从编辑器负载构建图。存在 ``isFeedback`` 时采用之，否则推导。
        """
        nodes = [PipelineNode.model_validate(n) for n in data.get("nodes", [])]
        edges = [PipelineEdge.model_validate(e) for e in data.get("edges", [])]
        return cls(nodes=nodes, edges=edges, classifier=classifier)

    # ------------------------------------------------------------------
    # Display helpers
    # 展示辅助方法
    # ------------------------------------------------------------------

    def summary(self, statuses: dict[str, JobStatus] | None = None) -> str:
        """
        One-line summary for logging, e.g. Graph[6 nodes, 1 feedback: 2 COMPLETED, 4 IDLE]
        生成单行状态摘要，用于日志输出。
        """
        counts: dict[str, int] = {}
        for n in self._nodes.values():
            status = statuses.get(n.id, n.status) if statuses else n.status
            counts[status.value] = counts.get(status.value, 0) + 1
        feedback = sum(1 for e in self._edges if e.is_feedback)
        parts = ", ".join(f"{v} {k}" for k, v in counts.items())
        return f"Graph[{len(self._nodes)} nodes, {feedback} feedback: {parts}]"

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes


class NodeConfigUpdate:
    """
    Maps editor (camelCase) keys onto model field names for partial updates.
    将编辑器的 camelCase 键映射为模型字段名，用于部分更新。
    """

    _NODE_FIELDS = {"type": "node_type"}
    _CONFIG_FIELDS = {
        "inputPath": "input_path",
        "outputPath": "output_path",
        "scriptName": "script_name",
    }

    @classmethod
    def field_name(cls, key: str) -> str:
        return cls._NODE_FIELDS.get(key, key)

    @classmethod
    def normalize(cls, config_update: dict[str, Any]) -> dict[str, Any]:
        return {cls._CONFIG_FIELDS.get(k, k): v for k, v in config_update.items()}
