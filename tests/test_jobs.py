"""
作业提交与调度解析测试 — 覆盖：
  1. 调度对话框输入的回退规则 (Schedule Fallbacks)
  2. 只有 IMMEDIATE 会真正触发运行 (Submission)

运行方式:
    pytest tests/test_jobs.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from dag.executor import ExecutionTimings
from dag.graph import PipelineGraph
from dag.orchestrator import Orchestrator, OrchestratorSettings, RunInProgressError
from jobs import JobSubmitter, parse_schedule
from jobs.schedule import describe
from schema import IntervalUnit, NodeType, PipelineNode, RunOutcome, ScheduleMode

NOW = datetime(2024, 3, 1, 9, 30)


def _orchestrator(step_hook=None) -> Orchestrator:
    graph = PipelineGraph(nodes=[PipelineNode(id="a", label="a", node_type=NodeType.PREP)])
    settings = OrchestratorSettings(
        poll_interval=0.01,
        max_iterations=1000,
        run_timeout=None,
        node_timeout=None,
        check_cycles=True,
        timings=ExecutionTimings(queue_delay=0.001, init_delay=0.001, progress_step=25, progress_step_delay=0.001),
    )
    return Orchestrator(graph, settings=settings, step_hook=step_hook)


# ======================================================================
# Schedule parsing
# ======================================================================


class TestParseSchedule:

    def test_missing_payload_is_immediate(self):
        schedule = parse_schedule(None)
        assert schedule.mode == ScheduleMode.IMMEDIATE
        assert schedule.is_active is False
        assert describe(schedule) == "immediately"

    def test_unknown_mode_falls_back_to_immediate(self):
        assert parse_schedule({"mode": "HOURLY"}).mode == ScheduleMode.IMMEDIATE

    def test_mode_is_case_insensitive(self):
        schedule = parse_schedule({"mode": "recurring"})
        assert schedule.mode == ScheduleMode.RECURRING
        assert schedule.is_active is True

    @pytest.mark.parametrize("raw,expected", [
        ("3", 3),
        (7, 7),
        ("abc", 1),
        ("0", 1),
        (-4, 1),
        (None, 1),
    ])
    def test_interval_fallback(self, raw, expected):
        schedule = parse_schedule({"mode": "RECURRING", "recurring": {"intervalValue": raw}})
        assert schedule.recurring.interval_value == expected

    def test_unit_fallback_to_days(self):
        schedule = parse_schedule({"mode": "RECURRING", "recurring": {"intervalValue": 2, "intervalUnit": "fortnights"}})
        assert schedule.recurring.interval_unit == IntervalUnit.DAYS
        assert describe(schedule) == "every 2 days"

    def test_snake_case_keys_and_cron(self):
        schedule = parse_schedule({
            "mode": "RECURRING",
            "recurring": {"interval_value": 1, "interval_unit": "HOURS", "cron_expression": "0 * * * *"},
        })
        assert schedule.recurring.interval_unit == IntervalUnit.HOURS
        assert describe(schedule) == "cron '0 * * * *'"

    def test_singular_unit_description(self):
        schedule = parse_schedule({"mode": "RECURRING", "recurring": {"intervalValue": 1, "intervalUnit": "WEEKS"}})
        assert describe(schedule) == "every 1 week"

    def test_specific_time_is_kept(self):
        schedule = parse_schedule({"mode": "SPECIFIC_TIME", "specificTime": "2024-03-05T14:00"}, now=NOW)
        assert schedule.specific_time == "2024-03-05T14:00"
        assert describe(schedule) == "at 2024-03-05T14:00"

    @pytest.mark.parametrize("raw", ["tomorrow-ish", "", None])
    def test_invalid_specific_time_defaults_to_next_day(self, raw):
        schedule = parse_schedule({"mode": "SPECIFIC_TIME", "specificTime": raw}, now=NOW)
        assert schedule.specific_time == "2024-03-02T09:30"
        assert schedule.is_active is True


# ======================================================================
# Submission
# ======================================================================


class TestJobSubmitter:

    @pytest.mark.asyncio
    async def test_immediate_submission_runs_the_graph(self):
        orch = _orchestrator()
        submitter = JobSubmitter(orch)

        receipt = await submitter.submit({"mode": "IMMEDIATE"}, job_name="adhoc")

        assert receipt.started is True
        assert receipt.result.outcome == RunOutcome.SUCCEEDED
        assert receipt.result.job_id == receipt.job_id
        assert receipt.job_name == "adhoc"
        assert submitter.scheduled == []

    @pytest.mark.asyncio
    async def test_recurring_submission_is_recorded_not_run(self):
        orch = _orchestrator()
        submitter = JobSubmitter(orch)

        receipt = await submitter.submit({"mode": "RECURRING", "recurring": {"intervalValue": "2"}})

        assert receipt.started is False
        assert receipt.result is None
        assert receipt.description == "every 2 days"
        assert [r.job_id for r in submitter.scheduled] == [receipt.job_id]
        assert orch.status()["a"] == {"status": "IDLE", "progress": 0}

    @pytest.mark.asyncio
    async def test_default_job_name(self):
        receipt = await JobSubmitter(_orchestrator()).submit()
        assert receipt.job_name.startswith("Job-")

    @pytest.mark.asyncio
    async def test_submission_rejected_while_running(self):
        gate = asyncio.Event()

        async def hook(node_id: str, progress: int) -> None:
            await gate.wait()

        orch = _orchestrator(step_hook=hook)
        submitter = JobSubmitter(orch)
        first = asyncio.create_task(submitter.submit())
        await asyncio.sleep(0)

        assert not submitter.can_submit()
        with pytest.raises(RunInProgressError):
            await submitter.submit()

        gate.set()
        receipt = await first
        assert receipt.result.outcome == RunOutcome.SUCCEEDED
        assert submitter.can_submit()
