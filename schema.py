"""
Pydantic data models for PodFlow.
Defines the core data structures shared by the graph model, the execution
engine, and the job-submission layer.
PodFlow 的 Pydantic 数据模型。
定义了贯穿图模型、执行引擎与作业提交层的核心数据结构。

Field aliases follow the editor's camelCase payload (``inputPath``,
``costPerHour`` ...) so graphs supplied by the canvas validate directly.
字段别名与编辑器的 camelCase 负载保持一致，画布提交的图可以直接校验。
"""

from __future__ import annotations

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ======================================================================
# Node lifecycle
# 节点生命周期
# ======================================================================

class JobStatus(str, Enum):
    """
    Node execution states, managed by NodeStateMachine.
    节点执行状态，由 NodeStateMachine 强制管理合法转移。

    Transition graph:
    转移图：
        IDLE -> QUEUED -> INITIALIZING -> PROCESSING -> COMPLETED
        Any non-terminal state -> FAILED | CANCELLED
        任意非终态              -> FAILED | CANCELLED
    """
    IDLE = "IDLE"                   # 等待调度
    QUEUED = "QUEUED"               # 已被编排循环启动，排队中
    INITIALIZING = "INITIALIZING"   # 启动中
    PROCESSING = "PROCESSING"       # 处理中，progress 有意义
    COMPLETED = "COMPLETED"         # 成功完成（终态）
    FAILED = "FAILED"               # 失败（终态）
    CANCELLED = "CANCELLED"         # 被编排循环取消（终态）


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.INITIALIZING, JobStatus.PROCESSING})


class NodeType(str, Enum):
    """
    Pipeline step roles. The engine only reads this to classify feedback sources.
    流水线步骤角色。引擎只用它来判断反馈源。
    """
    PREP = "prep"
    ANALYSIS = "analysis"
    POST_PROCESS = "post-process"
    SERVING = "serving"
    DRIFT = "drift"
    RETRAINING = "retraining"


# ======================================================================
# Resources (carried on nodes, never interpreted by the engine)
# 资源配置（挂在节点上，引擎不解释）
# ======================================================================

class ResourceTier(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    GPU_SMALL = "GPU_SMALL"
    GPU_LARGE = "GPU_LARGE"


class ResourceConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: ResourceTier
    cpu: str
    memory: str
    gpu: str | None = None
    cost_per_hour: float = Field(alias="costPerHour", ge=0.0)


# ======================================================================
# Graph structures
# 图结构
# ======================================================================

class NodeConfig(BaseModel):
    """
    Free-form path strings attached to a node.
    节点的自由格式路径配置。
    """
    model_config = ConfigDict(populate_by_name=True)

    input_path: str | None = Field(default=None, alias="inputPath")
    output_path: str | None = Field(default=None, alias="outputPath")
    script_name: str | None = Field(default=None, alias="scriptName")


class PipelineNode(BaseModel):
    """
    A single job node in the pipeline graph.
    流水线图中的单个作业节点。

    `status` and `progress` here are the editor's copy; during a run the
    StatusStore is authoritative and the graph is a read-only snapshot.
    这里的 status/progress 是编辑器侧的副本；运行期间以 StatusStore 为准。
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Opaque node id, e.g. 'node-prep'")     # 节点唯一 ID
    label: str = ""                                                        # 展示名称
    node_type: NodeType = Field(alias="type")                              # 节点角色
    status: JobStatus = JobStatus.IDLE
    progress: int = Field(default=0, ge=0, le=100)
    resource: ResourceConfig | None = None
    config: NodeConfig = Field(default_factory=NodeConfig)


class PipelineEdge(BaseModel):
    """
    A directed dependency edge. Immutable once built; hashable so blocking
    edges can be returned as a set.
    有向依赖边。构建后不可变；可哈希，以便阻塞边以 set 形式返回。
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source: str = Field(description="Source node ID")   # 起点节点 ID
    target: str = Field(description="Target node ID")   # 终点节点 ID
    is_feedback: bool = Field(default=False, alias="isFeedback")  # 反馈边：不参与就绪判断


# ======================================================================
# Status store entries
# 状态表条目
# ======================================================================

class NodeState(BaseModel):
    """One entry of the StatusStore."""
    status: JobStatus = JobStatus.IDLE
    progress: int = Field(default=0, ge=0, le=100)


class StatusEvent(BaseModel):
    """
    Published on every StatusStore write.
    每次 StatusStore 写入时发布的事件。
    """
    node_id: str
    status: JobStatus
    progress: int
    previous: JobStatus | None = None
    timestamp: float = Field(default_factory=time.monotonic)


# ======================================================================
# Run results
# 运行结果
# ======================================================================

class RunOutcome(str, Enum):
    """
    Aggregate outcome of one run.
    一次 Run 的汇总结果。
    """
    SUCCEEDED = "SUCCEEDED"     # 所有节点 COMPLETED
    FAILED = "FAILED"           # 有节点失败，其下游被永久阻塞
    DEADLOCKED = "DEADLOCKED"   # 无法再推进（非反馈环 / 迭代上限）
    TIMED_OUT = "TIMED_OUT"     # 超出墙钟预算
    CANCELLED = "CANCELLED"     # 被外部取消


class RunResult(BaseModel):
    job_id: str
    job_name: str
    outcome: RunOutcome
    iterations: int = 0
    started_at: float
    finished_at: float
    statuses: dict[str, NodeState] = Field(default_factory=dict)
    failed_nodes: list[str] = Field(default_factory=list)
    blocked_nodes: list[str] = Field(default_factory=list)
    detail: str = ""

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at


# ======================================================================
# Scheduling intent
# 调度意图
# ======================================================================

class ScheduleMode(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    RECURRING = "RECURRING"
    SPECIFIC_TIME = "SPECIFIC_TIME"


class IntervalUnit(str, Enum):
    HOURS = "HOURS"
    DAYS = "DAYS"
    WEEKS = "WEEKS"


class RecurringSchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    interval_value: int = Field(default=1, ge=1, alias="intervalValue")
    interval_unit: IntervalUnit = Field(default=IntervalUnit.DAYS, alias="intervalUnit")
    cron_expression: str | None = Field(default=None, alias="cronExpression")


class ScheduleConfig(BaseModel):
    """
    Output of the scheduling dialog. Only IMMEDIATE maps to a real run.
    调度对话框的输出。只有 IMMEDIATE 会真正触发运行。
    """
    model_config = ConfigDict(populate_by_name=True)

    mode: ScheduleMode = ScheduleMode.IMMEDIATE
    recurring: RecurringSchedule | None = None
    specific_time: str | None = Field(default=None, alias="specificTime")  # ISO 时间字符串
    is_active: bool = Field(default=False, alias="isActive")
