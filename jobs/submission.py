"""
Job Submission - Maps a schedule intent onto the orchestrator.
作业提交 —— 将调度意图映射到编排器。

Only IMMEDIATE actually calls Orchestrator.start_run(). RECURRING and
SPECIFIC_TIME are accepted and recorded but not wired to any timer or cron
mechanism: the receipt says so explicitly.
只有 IMMEDIATE 会真正调用 Orchestrator.start_run()。RECURRING 和 SPECIFIC_TIME
会被接收并记录，但不接入任何定时器或 cron 机制：回执中会明确标注。
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from dag.orchestrator import Orchestrator, RunInProgressError, default_job_name, new_job_id
from jobs.schedule import describe, parse_schedule
from schema import RunResult, ScheduleConfig, ScheduleMode

logger = logging.getLogger(__name__)


class SubmissionReceipt(BaseModel):
    """
    What happened to one submission.
    一次提交的处理结果。
    """
    job_id: str
    job_name: str
    schedule: ScheduleConfig
    description: str
    started: bool = Field(description="True if a run was actually executed")  # 是否真正执行了运行
    result: RunResult | None = None


class JobSubmitter:
    """
    Entry point of the job-submission collaborator.
    作业提交方的入口。
    """

    def __init__(self, orchestrator: Orchestrator):
        self._orchestrator = orchestrator
        self._scheduled: list[SubmissionReceipt] = []

    @property
    def scheduled(self) -> list[SubmissionReceipt]:
        """Receipts of recorded, not-yet-wired schedules."""
        return list(self._scheduled)

    def can_submit(self) -> bool:
        return not self._orchestrator.is_running()

    async def submit(
        self,
        schedule: ScheduleConfig | dict[str, Any] | None = None,
        job_name: str | None = None,
    ) -> SubmissionReceipt:
        """
        Submit the current graph. Raises RunInProgressError while a run is
        active.
        提交当前图。运行进行中时抛出 RunInProgressError。
        """
        if not self.can_submit():
            raise RunInProgressError("A run is already in progress")

        if not isinstance(schedule, ScheduleConfig):
            schedule = parse_schedule(schedule)
        job_name = job_name or default_job_name()
        job_id = new_job_id()

        if schedule.is_active and schedule.mode != ScheduleMode.IMMEDIATE:
            receipt = SubmissionReceipt(
                job_id=job_id,
                job_name=job_name,
                schedule=schedule,
                description=describe(schedule),
                started=False,
            )
            self._scheduled.append(receipt)
            logger.info("[Submit] %s scheduled %s (%s); no scheduler is wired, nothing will run",
                        job_id, receipt.description, schedule.mode.value)
            return receipt

        logger.info("[Submit] %s (%s) submitted for immediate execution", job_id, job_name)
        result = await self._orchestrator.start_run(job_name=job_name, job_id=job_id)
        return SubmissionReceipt(
            job_id=job_id,
            job_name=job_name,
            schedule=schedule,
            description=describe(schedule),
            started=True,
            result=result,
        )
