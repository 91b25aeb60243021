"""
DAG module - Dependency-driven execution engine for pipeline graphs.
DAG 模块 —— 流水线图的依赖驱动执行引擎。

Components:
  - graph.py:         PipelineGraph data structure and graph operations
  - feedback.py:      Feedback edge classification
  - readiness.py:     Readiness resolution (which idle nodes may start)
  - state_machine.py: Node lifecycle state machine
  - status_store.py:  Shared per-node status/progress table
  - executor.py:      Per-node executor (phased simulation)
  - orchestrator.py:  Orchestration loop (reset, launch, detect outcome)

模块组成：
  - graph.py:         PipelineGraph 数据结构与图算法（环检测、拓扑排序、下游查询）
  - feedback.py:      反馈边分类
  - readiness.py:     就绪解析（哪些空闲节点可以启动）
  - state_machine.py: 节点生命周期状态机（强制合法状态转移）
  - status_store.py:  共享的节点状态/进度表（单写者）
  - executor.py:      单节点执行器（分阶段模拟）
  - orchestrator.py:  编排循环（重置、启动、判定结果）
"""

from dag.graph import PipelineGraph                      # 流水线有向图
from dag.feedback import FeedbackClassifier              # 反馈边分类器
from dag.state_machine import NodeStateMachine           # 节点状态机
from dag.status_store import StatusStore                 # 状态表
from dag.executor import ExecutionTimings, NodeExecutor  # 节点执行器
from dag.orchestrator import Orchestrator, OrchestratorSettings  # 编排器
