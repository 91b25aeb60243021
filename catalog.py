"""
Catalog - Static presets used by the pipeline editor.
目录 —— 流水线编辑器使用的静态预设。

  - RESOURCE_PRESETS: compute tiers and their hourly cost
  - NODE_TEMPLATES:   label and default tier per node type ("Add Step" menu)
  - build_default_pipeline(): the six-step MLOps loop with a retraining
    feedback edge back into prep

  - RESOURCE_PRESETS:          各计算规格及其小时成本
  - NODE_TEMPLATES:            每种节点类型的默认名称与规格（「添加步骤」菜单）
  - build_default_pipeline():  六步 MLOps 闭环，retraining 通过反馈边回到 prep

None of this is read by the engine; it only shapes the graphs the engine runs.
引擎不读取这些内容；它们只决定引擎所运行的图的形态。
"""

from __future__ import annotations

import time
from typing import NamedTuple

from dag.feedback import FeedbackClassifier
from dag.graph import PipelineGraph
from schema import NodeConfig, NodeType, PipelineEdge, PipelineNode, ResourceConfig, ResourceTier

INITIAL_PREP_PATH = "s3://bucket/raw/data.csv"
DEFAULT_OUTPUT_PATH = "s3://bucket/processed/clean_data.parquet"

RESOURCE_PRESETS: dict[ResourceTier, ResourceConfig] = {
    ResourceTier.SMALL: ResourceConfig(
        tier=ResourceTier.SMALL, cpu="2 vCPU", memory="4 GB", cost_per_hour=0.05,
    ),
    ResourceTier.MEDIUM: ResourceConfig(
        tier=ResourceTier.MEDIUM, cpu="4 vCPU", memory="16 GB", cost_per_hour=0.20,
    ),
    ResourceTier.LARGE: ResourceConfig(
        tier=ResourceTier.LARGE, cpu="8 vCPU", memory="32 GB", cost_per_hour=0.40,
    ),
    ResourceTier.GPU_SMALL: ResourceConfig(
        tier=ResourceTier.GPU_SMALL, cpu="4 vCPU", memory="16 GB", gpu="1x NVIDIA T4", cost_per_hour=0.90,
    ),
    ResourceTier.GPU_LARGE: ResourceConfig(
        tier=ResourceTier.GPU_LARGE, cpu="16 vCPU", memory="64 GB", gpu="1x NVIDIA A100", cost_per_hour=3.50,
    ),
}


class NodeTemplate(NamedTuple):
    label: str
    tier: ResourceTier


NODE_TEMPLATES: dict[NodeType, NodeTemplate] = {
    NodeType.PREP:         NodeTemplate("Data Preparation", ResourceTier.MEDIUM),
    NodeType.ANALYSIS:     NodeTemplate("Analysis Model", ResourceTier.GPU_SMALL),
    NodeType.POST_PROCESS: NodeTemplate("Post Process", ResourceTier.MEDIUM),
    NodeType.SERVING:      NodeTemplate("Model Serving", ResourceTier.LARGE),
    NodeType.DRIFT:        NodeTemplate("Drift Check", ResourceTier.SMALL),
    NodeType.RETRAINING:   NodeTemplate("Retrain Trigger", ResourceTier.GPU_LARGE),
}


def new_node(node_type: NodeType | str, node_id: str | None = None) -> PipelineNode:
    """
    A fresh IDLE node with the template defaults for `node_type`.
    按 `node_type` 模板默认值创建一个新的 IDLE 节点。

    Prep nodes get a placeholder output path; every other type gets a
    placeholder input path, to be wired to upstream in the config panel.
    prep 节点带占位输出路径；其他类型带占位输入路径，由配置面板连接上游。
    """
    node_type = NodeType(node_type)
    template = NODE_TEMPLATES[node_type]
    if node_type == NodeType.PREP:
        cfg = NodeConfig(output_path="s3://new/output")
    else:
        cfg = NodeConfig(input_path="s3://upstream/input")
    return PipelineNode(
        id=node_id or f"node-{time.time_ns() // 1_000_000}",
        label=template.label,
        node_type=node_type,
        resource=RESOURCE_PRESETS[template.tier].model_copy(),
        config=cfg,
    )


def _preset(tier: ResourceTier) -> ResourceConfig:
    return RESOURCE_PRESETS[tier].model_copy()


def build_default_pipeline(classifier: FeedbackClassifier | None = None) -> PipelineGraph:
    """
    prep -> analysis -> post-process -> serving -> drift -> retraining
      ^                                                        |
      +-------------------- (feedback) ------------------------+
    """
    nodes = [
        PipelineNode(
            id="node-prep", label="Data Preparation", node_type=NodeType.PREP,
            resource=_preset(ResourceTier.MEDIUM),
            config=NodeConfig(input_path=INITIAL_PREP_PATH, output_path=DEFAULT_OUTPUT_PATH,
                              script_name="clean_raw_data.py"),
        ),
        PipelineNode(
            id="node-analysis", label="Analysis Model", node_type=NodeType.ANALYSIS,
            resource=_preset(ResourceTier.GPU_SMALL),
            config=NodeConfig(input_path=DEFAULT_OUTPUT_PATH, script_name="train_model.py",
                              output_path="s3://bucket/models/v1.pt"),
        ),
        PipelineNode(
            id="node-post-process", label="Data Post Process", node_type=NodeType.POST_PROCESS,
            resource=_preset(ResourceTier.MEDIUM),
            config=NodeConfig(input_path="s3://bucket/models/v1.pt", script_name="evaluate_model.py",
                              output_path="s3://bucket/reports/eval.json"),
        ),
        PipelineNode(
            id="node-serving", label="Serving", node_type=NodeType.SERVING,
            resource=_preset(ResourceTier.LARGE),
            config=NodeConfig(input_path="s3://bucket/reports/eval.json", script_name="deploy_service.py",
                              output_path="endpoint://api.model-mesh.svc"),
        ),
        PipelineNode(
            id="node-drift", label="Drift Detection", node_type=NodeType.DRIFT,
            resource=_preset(ResourceTier.SMALL),
            config=NodeConfig(input_path="endpoint://api.model-mesh.svc", script_name="monitor_drift.py",
                              output_path="s3://bucket/alerts/drift.log"),
        ),
        PipelineNode(
            id="node-retraining", label="Retraining Trigger", node_type=NodeType.RETRAINING,
            resource=_preset(ResourceTier.GPU_LARGE),
            config=NodeConfig(input_path="s3://bucket/alerts/drift.log", script_name="trigger_retrain.py",
                              output_path="trigger://pipeline-restart"),
        ),
    ]
    edges = [
        PipelineEdge(id="e1-2", source="node-prep", target="node-analysis"),
        PipelineEdge(id="e2-3", source="node-analysis", target="node-post-process"),
        PipelineEdge(id="e3-4", source="node-post-process", target="node-serving"),
        PipelineEdge(id="e4-5", source="node-serving", target="node-drift"),
        PipelineEdge(id="e5-6", source="node-drift", target="node-retraining"),
        PipelineEdge(id="e-retrain-prep", source="node-retraining", target="node-prep"),
    ]
    return PipelineGraph(nodes=nodes, edges=edges, classifier=classifier)
