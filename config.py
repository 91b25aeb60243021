"""
Configuration module for PodFlow.
Loads settings from environment variables or .env file.
PodFlow 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Node Executor Timings ---
# --- 节点执行器各阶段停留时间 ---
QUEUE_DELAY_SECONDS = float(os.getenv("QUEUE_DELAY_SECONDS", "0.8"))                  # QUEUED 阶段停留（模拟排队延迟）
INIT_DELAY_SECONDS = float(os.getenv("INIT_DELAY_SECONDS", "1.5"))                    # INITIALIZING 阶段停留（模拟启动延迟）
PROGRESS_STEP = int(os.getenv("PROGRESS_STEP", "10"))                                 # PROCESSING 阶段每次进度增量
PROGRESS_STEP_DELAY_SECONDS = float(os.getenv("PROGRESS_STEP_DELAY_SECONDS", "0.2"))  # 每次进度增量之间的停留

# --- Orchestration Loop ---
# --- 编排循环参数 ---
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "0.5"))  # 无状态变更事件时的兜底轮询间隔
MAX_LOOP_ITERATIONS = int(os.getenv("MAX_LOOP_ITERATIONS", "1000"))      # 连续无进展的迭代上限（仅统计静默超过最长阶段停留的迭代），超过即判定为死锁
RUN_TIMEOUT_SECONDS = float(os.getenv("RUN_TIMEOUT_SECONDS", "0"))       # 整个 Run 的墙钟预算（0 = 不限制）
NODE_TIMEOUT_SECONDS = float(os.getenv("NODE_TIMEOUT_SECONDS", "0"))     # 单个节点执行的最长时间（0 = 不限制）
CHECK_CYCLES_ON_START = os.getenv("CHECK_CYCLES_ON_START", "true").lower() == "true"  # 启动前检查非反馈子图是否有环

# --- Feedback Classification ---
# --- 反馈边分类 ---
# Comma-separated node types whose outgoing edges never block readiness.
# 逗号分隔的节点类型，这些类型节点发出的边不参与就绪判断。
FEEDBACK_NODE_TYPES = [
    t.strip() for t in os.getenv("FEEDBACK_NODE_TYPES", "retraining").split(",") if t.strip()
]

# --- Job Defaults ---
# --- 作业默认值 ---
DEFAULT_RECURRING_INTERVAL = int(os.getenv("DEFAULT_RECURRING_INTERVAL", "1"))  # 非法调度间隔时的回退值
