"""
Jobs module - Submission and schedule intent on top of the orchestrator.
作业模块 —— 构建在编排器之上的作业提交与调度意图。

Components:
  - schedule.py:   tolerant parsing of the scheduling dialog's output
  - submission.py: JobSubmitter, maps a schedule to a run (IMMEDIATE only)

模块组成：
  - schedule.py:   容错解析调度对话框的输出
  - submission.py: JobSubmitter，将调度意图映射为运行（仅 IMMEDIATE）
"""

from jobs.schedule import parse_schedule                     # 调度配置解析
from jobs.submission import JobSubmitter, SubmissionReceipt  # 作业提交
